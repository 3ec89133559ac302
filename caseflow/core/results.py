"""
Tagged operation results for the API boundary.

Usage::

    result = await run_operation(
        db,
        "accept_case",
        marketplaceService.accept(db, contractor_id, case_id, pricing),
    )
    if not result.success:
        ...  # result.error is an ErrorKind

The operation runs inside a SAVEPOINT on the caller's session, so a failure
discards every write the operation made while leaving the surrounding request
transaction usable.
"""

from __future__ import annotations

import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import ERROR_LABELS, ErrorKind, WorkflowError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """``success`` plus either a value or a typed error kind."""

    success: bool
    data: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None, message: Optional[str] = None) -> "OperationResult[T]":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, kind: ErrorKind, message: Optional[str] = None) -> "OperationResult[T]":
        return cls(success=False, error=kind, message=message or ERROR_LABELS[kind])

    @property
    def label(self) -> Optional[str]:
        return ERROR_LABELS[self.error] if self.error else None


async def run_operation(
    db: AsyncSession,
    name: str,
    operation: Coroutine[Any, Any, T],
) -> OperationResult[T]:
    """Await a service coroutine and convert its outcome into a tagged result.

    ``WorkflowError`` becomes a typed failure carrying its message. Anything
    else is an unexpected error: it is logged with a traceback and reported
    as an opaque ``INTERNAL`` failure.
    """
    try:
        async with db.begin_nested():
            value = await operation
    except WorkflowError as exc:
        logger.info("Operation %s failed: %s (%s)", name, exc.kind.value, exc.message)
        return OperationResult.fail(exc.kind, exc.message)
    except Exception:
        logger.exception("Unexpected error during %s", name)
        return OperationResult.fail(ErrorKind.INTERNAL)
    return OperationResult.ok(value)
