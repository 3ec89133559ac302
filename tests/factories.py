"""
Row builders for database-backed tests.

Each helper inserts one row through the given session, flushes, and
returns the ORM object.  Quotes are built through ``quoteService`` so that
their totals and approval tokens are realistic.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.models.base import utcnow
from caseflow.models.quote import Quote
from caseflow.models.user import ContractorProfile, User, UserRole
from caseflow.models.work_order import CasePriority, CaseStatus, WorkOrder
from caseflow.services import quoteService


async def make_user(
    db: AsyncSession,
    role: UserRole = UserRole.LANDLORD,
    **fields: Any,
) -> User:
    fields.setdefault("email", f"{role.value}-{uuid.uuid4().hex[:10]}@example.com")
    user = User(role=role, **fields)
    db.add(user)
    await db.flush()
    return user


async def make_landlord(db: AsyncSession, **fields: Any) -> User:
    fields.setdefault("first_name", "Lena")
    fields.setdefault("last_name", "Landlord")
    return await make_user(db, UserRole.LANDLORD, **fields)


async def make_contractor(
    db: AsyncSession,
    specialties: Optional[list[str]] = None,
    is_active: bool = True,
    with_profile: bool = True,
    **fields: Any,
) -> User:
    fields.setdefault("display_name", "Bob's Plumbing")
    user = await make_user(db, UserRole.CONTRACTOR, **fields)
    if with_profile:
        db.add(
            ContractorProfile(
                user_id=user.id,
                business_name=fields["display_name"],
                specialties=specialties or [],
                is_active=is_active,
            )
        )
        await db.flush()
    return user


async def make_case(
    db: AsyncSession,
    reporter: Optional[User] = None,
    *,
    title: str = "Leaking kitchen sink",
    category: Optional[str] = "Plumbing",
    priority: CasePriority = CasePriority.NORMAL,
    status: CaseStatus = CaseStatus.NEW,
    posted_at: Optional[datetime] = None,
    posted: bool = True,
    **fields: Any,
) -> WorkOrder:
    if posted and posted_at is None:
        posted_at = utcnow() - timedelta(hours=1)
    case = WorkOrder(
        reporter_user_id=reporter.id if reporter else None,
        title=title,
        category=category,
        priority=priority,
        status=status,
        posted_at=posted_at if posted else None,
        **fields,
    )
    db.add(case)
    await db.flush()
    return case


async def make_sent_quote(
    db: AsyncSession,
    case: WorkOrder,
    contractor: User,
    total: Decimal | str = "500.00",
    **fields: Any,
) -> Quote:
    """A single-line quote for ``total`` moved to ``sent``."""
    quote = await quoteService.create_quote(
        db,
        contractor.id,
        case.id,
        line_items=[quoteService.LineItemInput(name="Labour", unit_price=Decimal(str(total)))],
        **fields,
    )
    sent = await quoteService.send_quote(db, contractor.id, quote.id)
    return sent.quote
