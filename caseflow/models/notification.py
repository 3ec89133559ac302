"""
SQLAlchemy models for the side-channel records written by outbox handlers:
reminders, in-app notifications, and the case message threads that carry
system messages.

None of these are written inside a primary state transition; they are
produced after the fact by ``services.notificationService``.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, str_enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NotificationType(str, enum.Enum):
    """Classification of in-app notifications."""
    CASE_ACCEPTED = "case_accepted"
    QUOTE_RECEIVED = "quote_received"
    QUOTE_APPROVED = "quote_approved"
    QUOTE_DECLINED = "quote_declined"
    QUOTE_EXPIRED = "quote_expired"
    COUNTER_PROPOSAL = "counter_proposal"
    COUNTER_RESPONSE = "counter_response"
    JOB_UPDATE = "job_update"
    CONFIRMATION_OVERDUE = "confirmation_overdue"


class MessageType(str, enum.Enum):
    TEXT = "text"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Reminder
# ---------------------------------------------------------------------------

class Reminder(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A dated reminder for a user (e.g. the day before a job starts)."""

    __tablename__ = "reminders"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    case_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    reminder_type: Mapped[str] = mapped_column(String(50), nullable=False, default="custom")
    due_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    lead_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Reminder(user={self.user_id}, title={self.title}, due={self.due_at})>"


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------

class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Persistent in-app notification for the counter-party of an event."""

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        str_enum(NotificationType, "notification_type"),
        nullable=False,
    )
    data_json: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "read"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, user={self.user_id}, "
            f"type={self.notification_type})>"
        )


# ---------------------------------------------------------------------------
# Message threads
# ---------------------------------------------------------------------------

class MessageThread(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Conversation between the case reporter and the assigned contractor."""

    __tablename__ = "message_threads"

    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    subject: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_message_preview: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<MessageThread(case={self.case_id}, contractor={self.contractor_id})>"


class ChatMessage(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "chat_messages"

    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("message_threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        str_enum(MessageType, "message_type"),
        nullable=False,
        default=MessageType.TEXT,
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id}, thread={self.thread_id}, "
            f"type={self.message_type})>"
        )
