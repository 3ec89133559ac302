"""
Unit tests for the Work-Order State Manager -- CASEFLOW-LIFECYCLE-001.

Tests the finite state machine governing case status transitions, the
actor guards, hold/resume semantics and the assignment/schedule invariants.
"""

import uuid
from datetime import datetime, timezone

import pytest

from caseflow.models.work_order import CaseStatus
from caseflow.services.workOrderStateManager import (
    HOLDABLE_STATUSES,
    VALID_TRANSITIONS,
    ActorType,
    TransitionResult,
    check_invariants,
    effective_status,
    get_valid_transitions,
    validate_transition,
)


# ---------------------------------------------------------------------------
# Valid state transitions (happy path)
# ---------------------------------------------------------------------------


class TestValidTransitions:
    """Tests that all documented forward transitions are allowed."""

    def test_new_to_in_review(self):
        result = validate_transition(CaseStatus.NEW, CaseStatus.IN_REVIEW, ActorType.CONTRACTOR)
        assert result.allowed is True

    def test_in_review_to_scheduled_by_contractor(self):
        result = validate_transition(
            CaseStatus.IN_REVIEW, CaseStatus.SCHEDULED, ActorType.CONTRACTOR
        )
        assert result.allowed is True

    def test_scheduled_to_scheduled_is_a_reschedule(self):
        result = validate_transition(
            CaseStatus.SCHEDULED, CaseStatus.SCHEDULED, ActorType.CONTRACTOR
        )
        assert result.allowed is True

    def test_scheduled_to_in_progress(self):
        result = validate_transition(
            CaseStatus.SCHEDULED, CaseStatus.IN_PROGRESS, ActorType.CONTRACTOR
        )
        assert result.allowed is True

    def test_in_progress_to_resolved(self):
        result = validate_transition(
            CaseStatus.IN_PROGRESS, CaseStatus.RESOLVED, ActorType.CONTRACTOR
        )
        assert result.allowed is True

    def test_resolved_to_closed_by_landlord(self):
        result = validate_transition(CaseStatus.RESOLVED, CaseStatus.CLOSED, ActorType.LANDLORD)
        assert result.allowed is True

    @pytest.mark.parametrize(
        "status",
        [s for s in CaseStatus if s != CaseStatus.CLOSED],
    )
    def test_close_allowed_from_every_status_but_closed(self, status):
        result = validate_transition(status, CaseStatus.CLOSED, ActorType.LANDLORD)
        assert result.allowed is True


# ---------------------------------------------------------------------------
# Invalid transitions
# ---------------------------------------------------------------------------


class TestInvalidTransitions:

    def test_new_cannot_jump_to_scheduled(self):
        result = validate_transition(CaseStatus.NEW, CaseStatus.SCHEDULED, ActorType.CONTRACTOR)
        assert result.allowed is False
        assert "Invalid transition" in result.reason

    def test_in_review_cannot_start_work(self):
        result = validate_transition(
            CaseStatus.IN_REVIEW, CaseStatus.IN_PROGRESS, ActorType.CONTRACTOR
        )
        assert result.allowed is False

    def test_closed_is_terminal(self):
        assert VALID_TRANSITIONS[CaseStatus.CLOSED] == set()
        for target in CaseStatus:
            assert validate_transition(CaseStatus.CLOSED, target, ActorType.ADMIN).allowed is False

    def test_resolved_cannot_be_put_on_hold(self):
        result = validate_transition(CaseStatus.RESOLVED, CaseStatus.ON_HOLD, ActorType.LANDLORD)
        assert result.allowed is False

    def test_resolved_cannot_reopen(self):
        result = validate_transition(
            CaseStatus.RESOLVED, CaseStatus.IN_PROGRESS, ActorType.CONTRACTOR
        )
        assert result.allowed is False


# ---------------------------------------------------------------------------
# Actor guards
# ---------------------------------------------------------------------------


class TestGuards:

    def test_landlord_cannot_confirm_schedule(self):
        result = validate_transition(
            CaseStatus.IN_REVIEW, CaseStatus.SCHEDULED, ActorType.LANDLORD
        )
        assert result.allowed is False
        assert "contractor" in result.reason

    def test_landlord_cannot_complete_work(self):
        result = validate_transition(
            CaseStatus.IN_PROGRESS, CaseStatus.RESOLVED, ActorType.LANDLORD
        )
        assert result.allowed is False

    def test_contractor_cannot_close(self):
        result = validate_transition(
            CaseStatus.IN_PROGRESS, CaseStatus.CLOSED, ActorType.CONTRACTOR
        )
        assert result.allowed is False
        assert "landlord" in result.reason

    def test_contractor_cannot_put_on_hold(self):
        result = validate_transition(
            CaseStatus.SCHEDULED, CaseStatus.ON_HOLD, ActorType.CONTRACTOR
        )
        assert result.allowed is False

    def test_admin_may_drive_work_forward(self):
        result = validate_transition(CaseStatus.SCHEDULED, CaseStatus.IN_PROGRESS, ActorType.ADMIN)
        assert result.allowed is True


# ---------------------------------------------------------------------------
# Hold / resume
# ---------------------------------------------------------------------------


class TestHoldResume:

    @pytest.mark.parametrize("status", sorted(HOLDABLE_STATUSES, key=lambda s: s.value))
    def test_holdable_statuses_can_be_paused(self, status):
        result = validate_transition(status, CaseStatus.ON_HOLD, ActorType.LANDLORD)
        assert result.allowed is True

    def test_resume_to_stored_status(self):
        result = validate_transition(
            CaseStatus.ON_HOLD,
            CaseStatus.SCHEDULED,
            ActorType.LANDLORD,
            resume_status=CaseStatus.SCHEDULED,
        )
        assert result.allowed is True

    def test_resume_to_other_status_rejected(self):
        result = validate_transition(
            CaseStatus.ON_HOLD,
            CaseStatus.IN_PROGRESS,
            ActorType.LANDLORD,
            resume_status=CaseStatus.SCHEDULED,
        )
        assert result.allowed is False
        assert "Scheduled" in result.reason

    def test_resume_without_stored_status_rejected(self):
        result = validate_transition(
            CaseStatus.ON_HOLD, CaseStatus.NEW, ActorType.ADMIN, resume_status=None
        )
        assert result.allowed is False

    def test_contractor_cannot_resume(self):
        result = validate_transition(
            CaseStatus.ON_HOLD,
            CaseStatus.SCHEDULED,
            ActorType.CONTRACTOR,
            resume_status=CaseStatus.SCHEDULED,
        )
        assert result.allowed is False

    def test_valid_transitions_from_hold_are_narrowed(self):
        targets = get_valid_transitions(
            CaseStatus.ON_HOLD, ActorType.LANDLORD, resume_status=CaseStatus.IN_REVIEW
        )
        assert targets == [CaseStatus.CLOSED, CaseStatus.IN_REVIEW]


# ---------------------------------------------------------------------------
# get_valid_transitions
# ---------------------------------------------------------------------------


class TestGetValidTransitions:

    def test_contractor_options_when_scheduled(self):
        targets = get_valid_transitions(CaseStatus.SCHEDULED, ActorType.CONTRACTOR)
        assert set(targets) == {CaseStatus.SCHEDULED, CaseStatus.IN_PROGRESS}

    def test_landlord_options_when_in_progress(self):
        targets = get_valid_transitions(CaseStatus.IN_PROGRESS, ActorType.LANDLORD)
        assert set(targets) == {CaseStatus.ON_HOLD, CaseStatus.CLOSED}

    def test_no_options_when_closed(self):
        assert get_valid_transitions(CaseStatus.CLOSED, ActorType.ADMIN) == []


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


class TestInvariants:

    def test_assigned_new_case_violates(self):
        result = check_invariants(CaseStatus.NEW, None, uuid.uuid4(), None)
        assert result == TransitionResult(
            allowed=False, reason="Assigned case cannot be in 'New' status."
        )

    def test_scheduled_start_requires_scheduled_status(self):
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        result = check_invariants(CaseStatus.IN_REVIEW, None, uuid.uuid4(), start)
        assert result.allowed is False

    def test_on_hold_uses_resume_status(self):
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert effective_status(CaseStatus.ON_HOLD, CaseStatus.SCHEDULED) == CaseStatus.SCHEDULED
        result = check_invariants(CaseStatus.ON_HOLD, CaseStatus.SCHEDULED, uuid.uuid4(), start)
        assert result.allowed is True

    def test_unassigned_new_case_is_valid(self):
        assert check_invariants(CaseStatus.NEW, None, None, None).allowed is True
