"""
Shared FastAPI dependencies for the caseflow API.

Provides the async database session dependency used by all route handlers,
the acting-user dependency (identity is asserted by an upstream auth
gateway through request headers), and the translation of tagged operation
results into HTTP responses.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated, Optional, TypeVar

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from caseflow.core.config import settings
from caseflow.core.errors import ErrorKind
from caseflow.core.results import OperationResult
from caseflow.models.quote import PartyRole
from caseflow.services.workOrderStateManager import ActorType

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time.  The session factory
# produces lightweight ``AsyncSession`` instances that are scoped to a single
# request via the ``get_db`` dependency below.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session that commits when the request
    succeeds and rolls back on any exception.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ---------------------------------------------------------------------------
# Annotated type alias for convenience
# ---------------------------------------------------------------------------
DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Acting user
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as asserted by the auth gateway."""
    id: uuid.UUID
    role: ActorType

    @property
    def party_role(self) -> PartyRole:
        """Negotiation side; admins and the system act for the landlord."""
        if self.role == ActorType.CONTRACTOR:
            return PartyRole.CONTRACTOR
        return PartyRole.LANDLORD


async def get_actor(
    x_actor_id: Annotated[Optional[str], Header()] = None,
    x_actor_role: Annotated[Optional[str], Header()] = None,
) -> Actor:
    """Build the ``Actor`` from the ``X-Actor-Id`` / ``X-Actor-Role`` headers.

    Raises 401 when either header is missing and 400 when malformed.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id / X-Actor-Role headers.",
        )
    try:
        actor_id = uuid.UUID(x_actor_id)
        role = ActorType(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed actor headers.",
        )
    return Actor(id=actor_id, role=role)


CurrentActor = Annotated[Actor, Depends(get_actor)]


def require_role(actor: Actor, *roles: ActorType) -> None:
    if actor.role not in roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"This action requires one of: {', '.join(r.value for r in roles)}.",
        )


# ---------------------------------------------------------------------------
# Tagged results -> HTTP
# ---------------------------------------------------------------------------

STATUS_FOR_ERROR: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ALREADY_ASSIGNED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICTING_ROUND: status.HTTP_409_CONFLICT,
    ErrorKind.SLOT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class OperationFailed(Exception):
    """Raised by routes for a failed ``OperationResult``; rendered by the
    exception handler registered in ``main``."""

    def __init__(self, result: OperationResult) -> None:
        self.result = result
        self.status_code = STATUS_FOR_ERROR.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR)
        super().__init__(result.message)

    def body(self) -> dict:
        return {
            "success": False,
            "error": self.result.error.value if self.result.error else None,
            "label": self.result.label,
            "message": self.result.message,
        }


def unwrap(result: OperationResult[T]) -> T:
    """Return the value of a successful result or raise ``OperationFailed``."""
    if not result.success:
        raise OperationFailed(result)
    return result.data
