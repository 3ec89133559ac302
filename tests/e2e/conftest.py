"""
E2E test fixtures for the caseflow API.

Provides:
- The FastAPI app from ``create_app`` with ``get_db`` overridden to hand
  every request the test's own SQLite session
- httpx AsyncClient wired via ASGI transport (no network, no lifespan, so
  the outbox worker and sweeps never start)
- Seeded landlord / contractor users and header helpers that play the role
  of the upstream auth gateway
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps import get_db
from caseflow.main import create_app
from caseflow.models.user import User
from caseflow.services.workOrderStateManager import ActorType

from factories import make_contractor, make_landlord

BASE_URL = "http://testserver"
API = "/api/v1"


def actor_headers(user: User, role: ActorType | str) -> dict[str, str]:
    """Identity headers as the auth gateway would forward them."""
    role_value = role.value if isinstance(role, ActorType) else role
    return {"X-Actor-Id": str(user.id), "X-Actor-Role": role_value}


@pytest_asyncio.fixture
async def app(db_session: AsyncSession) -> FastAPI:
    application = create_app()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    application.dependency_overrides[get_db] = _override_get_db
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Seed users
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def landlord(db_session: AsyncSession) -> User:
    return await make_landlord(db_session)


@pytest_asyncio.fixture
async def contractor(db_session: AsyncSession) -> User:
    return await make_contractor(db_session, specialties=["Plumbing"])


@pytest_asyncio.fixture
async def rival(db_session: AsyncSession) -> User:
    return await make_contractor(db_session, display_name="Rival Repairs")


@pytest.fixture
def landlord_headers(landlord: User) -> dict[str, str]:
    return actor_headers(landlord, ActorType.LANDLORD)


@pytest.fixture
def contractor_headers(contractor: User) -> dict[str, str]:
    return actor_headers(contractor, ActorType.CONTRACTOR)


@pytest.fixture
def rival_headers(rival: User) -> dict[str, str]:
    return actor_headers(rival, ActorType.CONTRACTOR)
