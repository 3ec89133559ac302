"""
Case Store -- CASEFLOW-LIFECYCLE-001
====================================

Persistence primitives for work orders. Every status or assignment write
goes through a conditional update (``UPDATE ... WHERE status IN (...)``) so
that a read-modify-write can never silently overwrite a concurrent change;
callers that read first additionally take the row lock with
``lock_case``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import NotFoundError
from caseflow.models.work_order import CaseEvent, CaseStatus, WorkOrder

logger = logging.getLogger(__name__)


async def get_case(db: AsyncSession, case_id: uuid.UUID) -> WorkOrder:
    """Fetch a case by id, raising ``NotFoundError`` when it does not exist."""
    case = await db.get(WorkOrder, case_id)
    if case is None:
        raise NotFoundError("Case", case_id)
    return case


async def lock_case(db: AsyncSession, case_id: uuid.UUID) -> WorkOrder:
    """Fetch a case with a row lock (``SELECT ... FOR UPDATE``).

    The lock is held until the surrounding transaction ends, which totally
    orders transitions on the same case. Identity-map state is refreshed so
    the caller always sees the committed row.
    """
    stmt = (
        select(WorkOrder)
        .where(WorkOrder.id == case_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    case = result.scalar_one_or_none()
    if case is None:
        raise NotFoundError("Case", case_id)
    return case


async def update_case_if(
    db: AsyncSession,
    case_id: uuid.UUID,
    *,
    expected_statuses: Iterable[CaseStatus],
    require_unassigned: bool = False,
    require_posted: bool = False,
    values: dict[str, Any],
) -> bool:
    """Compare-and-set write on a case row.

    Applies ``values`` only when the stored status is one of
    ``expected_statuses`` (and, with ``require_unassigned``, no contractor is
    assigned yet; with ``require_posted``, the case is listed on the
    marketplace). Returns ``True`` when exactly one row was written.
    """
    conditions = [
        WorkOrder.id == case_id,
        WorkOrder.status.in_(list(expected_statuses)),
    ]
    if require_unassigned:
        conditions.append(WorkOrder.assigned_contractor_id.is_(None))
    if require_posted:
        conditions.append(WorkOrder.posted_at.is_not(None))

    stmt = (
        update(WorkOrder)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def reload_case(db: AsyncSession, case_id: uuid.UUID) -> WorkOrder:
    """Re-read a case after a conditional update bypassed the identity map."""
    case = await db.get(WorkOrder, case_id, populate_existing=True)
    if case is None:
        raise NotFoundError("Case", case_id)
    return case


def add_case_event(
    db: AsyncSession,
    case_id: uuid.UUID,
    event_type: str,
    description: str,
    *,
    actor_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> CaseEvent:
    """Append an audit-trail row for a case (flushed with the transition)."""
    case_event = CaseEvent(
        case_id=case_id,
        event_type=event_type,
        description=description,
        actor_id=actor_id,
        metadata_json=metadata or {},
    )
    db.add(case_event)
    return case_event


async def list_case_events(db: AsyncSession, case_id: uuid.UUID) -> list[CaseEvent]:
    """Audit trail of a case in chronological order."""
    await get_case(db, case_id)
    stmt = (
        select(CaseEvent)
        .where(CaseEvent.case_id == case_id)
        .order_by(CaseEvent.created_at.asc(), CaseEvent.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
