"""
Unit tests for the tagged operation results at the API boundary.

``run_operation`` must turn typed workflow errors into failures, report
anything else as an opaque internal error, and discard the writes of a
failed operation while keeping the surrounding transaction usable.
"""

import logging

import pytest
from sqlalchemy import func, select

from caseflow.core.errors import AlreadyAssignedError, ErrorKind, ValidationError
from caseflow.core.results import OperationResult, run_operation
from caseflow.models.user import User, UserRole

from factories import make_landlord

pytestmark = pytest.mark.asyncio


async def _count_users(db) -> int:
    return (await db.execute(select(func.count()).select_from(User))).scalar_one()


async def test_success_carries_value(db_session):
    async def op():
        return 42

    result = await run_operation(db_session, "answer", op())

    assert result == OperationResult(success=True, data=42)
    assert result.label is None


async def test_workflow_error_becomes_typed_failure(db_session):
    async def op():
        raise ValidationError("Title is required.")

    result = await run_operation(db_session, "quick_add_job", op())

    assert result.success is False
    assert result.error == ErrorKind.VALIDATION
    assert result.message == "Title is required."
    assert result.label == "Invalid Input"


async def test_already_assigned_message(db_session):
    async def op():
        raise AlreadyAssignedError("case-1")

    result = await run_operation(db_session, "accept_case", op())

    assert result.error == ErrorKind.ALREADY_ASSIGNED
    assert "already been assigned" in result.message


async def test_unexpected_error_is_internal_and_logged(db_session, caplog):
    async def op():
        raise RuntimeError("connection reset")

    with caplog.at_level(logging.ERROR, logger="caseflow.core.results"):
        result = await run_operation(db_session, "send_quote", op())

    assert result.error == ErrorKind.INTERNAL
    assert result.message == "Something went wrong"
    assert "connection reset" not in result.message
    assert "Unexpected error during send_quote" in caplog.text


async def test_failed_operation_discards_its_writes(db_session):
    await make_landlord(db_session)

    async def op():
        db_session.add(User(email="ghost@example.com", role=UserRole.LANDLORD))
        await db_session.flush()
        raise ValidationError("nope")

    result = await run_operation(db_session, "ghost", op())

    assert result.success is False
    assert await _count_users(db_session) == 1


async def test_session_usable_after_failure(db_session):
    async def failing():
        raise RuntimeError("boom")

    async def creating():
        return await make_landlord(db_session)

    await run_operation(db_session, "boom", failing())
    result = await run_operation(db_session, "create", creating())

    assert result.success is True
    assert await _count_users(db_session) == 1
