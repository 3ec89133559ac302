"""
Caseflow SQLAlchemy Models
=============================

Central import point for all ORM models. Import ``Base`` from here for the
``create_all`` convenience in tests and at startup.

Usage::

    from caseflow.models import Base, WorkOrder, Quote, CounterProposal
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, utcnow

# -- Users & contractors --
from .user import ContractorCustomer, ContractorProfile, User, UserRole

# -- Work orders --
from .work_order import (
    URGENT_PRIORITIES,
    CaseEvent,
    CasePriority,
    CaseStatus,
    ContractorDismissal,
    WorkOrder,
    display_priority,
)

# -- Quotes --
from .quote import (
    OPEN_QUOTE_STATUSES,
    TERMINAL_QUOTE_STATUSES,
    PartyRole,
    Quote,
    QuoteLineItem,
    QuoteStatus,
)

# -- Negotiation --
from .counter_proposal import CounterProposal, CounterProposalStatus

# -- Scheduling --
from .scheduling import (
    ACTIVE_SCHEDULE_STATUSES,
    NO_OVERLAP_CONSTRAINT,
    ScheduledJob,
    ScheduledJobStatus,
)

# -- Side channels --
from .notification import (
    ChatMessage,
    MessageThread,
    MessageType,
    Notification,
    NotificationType,
    Reminder,
)

# -- Outbox --
from .outbox import OutboxEvent, OutboxStatus

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDPrimaryKeyMixin",
    "utcnow",
    # Users
    "User",
    "UserRole",
    "ContractorProfile",
    "ContractorCustomer",
    # Work orders
    "WorkOrder",
    "CaseStatus",
    "CasePriority",
    "URGENT_PRIORITIES",
    "display_priority",
    "CaseEvent",
    "ContractorDismissal",
    # Quotes
    "Quote",
    "QuoteLineItem",
    "QuoteStatus",
    "PartyRole",
    "OPEN_QUOTE_STATUSES",
    "TERMINAL_QUOTE_STATUSES",
    # Negotiation
    "CounterProposal",
    "CounterProposalStatus",
    # Scheduling
    "ScheduledJob",
    "ScheduledJobStatus",
    "ACTIVE_SCHEDULE_STATUSES",
    "NO_OVERLAP_CONSTRAINT",
    # Side channels
    "Reminder",
    "Notification",
    "NotificationType",
    "MessageThread",
    "ChatMessage",
    "MessageType",
    # Outbox
    "OutboxEvent",
    "OutboxStatus",
]
