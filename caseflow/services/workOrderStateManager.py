"""
Work-Order State Manager -- CASEFLOW-LIFECYCLE-001
==================================================

Finite state machine governing all valid case status transitions. Every
status change MUST go through ``validate_transition`` before being persisted.

State machine overview::

    New --> In Review --> Scheduled --> In Progress --> Resolved --> Closed
                            |  ^
                            +--+  (reschedule)

    (any non-terminal, except Resolved) --> On Hold --> (resume status)
    (any state except Closed)           --> Closed

Guards enforce that only the correct actor type can trigger certain
transitions: contractors drive the work forward, landlords (and admins)
pause, resume and close.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from caseflow.models.work_order import CaseStatus


# ---------------------------------------------------------------------------
# Actor types for guard enforcement
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    LANDLORD = "landlord"
    CONTRACTOR = "contractor"
    SYSTEM = "system"
    ADMIN = "admin"


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

# Statuses a case may be paused from (and therefore resumed to)
HOLDABLE_STATUSES: frozenset[CaseStatus] = frozenset({
    CaseStatus.NEW,
    CaseStatus.IN_REVIEW,
    CaseStatus.SCHEDULED,
    CaseStatus.IN_PROGRESS,
})

# Each key is the current status, and the value is a set of statuses it can
# transition to. Guards are checked separately. On Hold lists every possible
# resume target; the stored resume status narrows it to exactly one.
VALID_TRANSITIONS: dict[CaseStatus, set[CaseStatus]] = {
    CaseStatus.NEW: {
        CaseStatus.IN_REVIEW,
        CaseStatus.ON_HOLD,
        CaseStatus.CLOSED,
    },
    CaseStatus.IN_REVIEW: {
        CaseStatus.SCHEDULED,
        CaseStatus.ON_HOLD,
        CaseStatus.CLOSED,
    },
    CaseStatus.SCHEDULED: {
        CaseStatus.SCHEDULED,  # re-confirm / reschedule
        CaseStatus.IN_PROGRESS,
        CaseStatus.ON_HOLD,
        CaseStatus.CLOSED,
    },
    CaseStatus.IN_PROGRESS: {
        CaseStatus.RESOLVED,
        CaseStatus.ON_HOLD,
        CaseStatus.CLOSED,
    },
    CaseStatus.ON_HOLD: set(HOLDABLE_STATUSES) | {CaseStatus.CLOSED},
    CaseStatus.RESOLVED: {
        CaseStatus.CLOSED,
    },
    CaseStatus.CLOSED: set(),  # terminal
}

# Statuses in which a contractor is attached to the case
ASSIGNED_STATUSES: frozenset[CaseStatus] = frozenset({
    CaseStatus.IN_REVIEW,
    CaseStatus.SCHEDULED,
    CaseStatus.IN_PROGRESS,
    CaseStatus.RESOLVED,
    CaseStatus.CLOSED,
})

# Statuses in which scheduled start/end may be set
SCHEDULED_STATUSES: frozenset[CaseStatus] = frozenset({
    CaseStatus.SCHEDULED,
    CaseStatus.IN_PROGRESS,
    CaseStatus.RESOLVED,
    CaseStatus.CLOSED,
})

_WORK_ACTORS = (ActorType.CONTRACTOR, ActorType.SYSTEM, ActorType.ADMIN)
_ADMIN_ACTORS = (ActorType.LANDLORD, ActorType.SYSTEM, ActorType.ADMIN)


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_work_actor(actor_type: ActorType, action: str) -> TransitionResult:
    """Scheduling, starting and completing work belong to the contractor."""
    if actor_type not in _WORK_ACTORS:
        return TransitionResult(
            allowed=False,
            reason=f"Only the assigned contractor can {action}.",
        )
    return TransitionResult(allowed=True)


def _guard_admin_actor(actor_type: ActorType, action: str) -> TransitionResult:
    if actor_type not in _ADMIN_ACTORS:
        return TransitionResult(
            allowed=False,
            reason=f"Only the landlord or an administrator can {action}.",
        )
    return TransitionResult(allowed=True)


def _guard_resume(
    new_status: CaseStatus,
    actor_type: ActorType,
    resume_status: Optional[CaseStatus],
) -> TransitionResult:
    """A paused case may only return to the status it was paused from."""
    result = _guard_admin_actor(actor_type, "resume a case")
    if not result.allowed:
        return result
    if resume_status is None or new_status != resume_status:
        expected = resume_status.value if resume_status else "unknown"
        return TransitionResult(
            allowed=False,
            reason=(
                f"Case on hold can only resume to '{expected}', "
                f"not '{new_status.value}'."
            ),
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: CaseStatus,
    new_status: CaseStatus,
    actor_type: ActorType = ActorType.SYSTEM,
    *,
    resume_status: Optional[CaseStatus] = None,
) -> TransitionResult:
    """Validate whether a case status transition is allowed.

    Checks two layers:
    1. Is the transition structurally valid per the state machine?
    2. Does the actor have permission for this specific transition (guards)?

    ``resume_status`` is the status stored when the case was put on hold and
    is only consulted for transitions out of On Hold.
    """
    # 1. Structural check
    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid transition: '{current_status.value}' -> '{new_status.value}'. "
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value)) or 'none'}."
            ),
        )

    # 2. Guard checks for specific transitions
    if new_status == CaseStatus.CLOSED:
        return _guard_admin_actor(actor_type, "close a case")

    if new_status == CaseStatus.ON_HOLD:
        return _guard_admin_actor(actor_type, "put a case on hold")

    if current_status == CaseStatus.ON_HOLD:
        return _guard_resume(new_status, actor_type, resume_status)

    if new_status == CaseStatus.SCHEDULED:
        return _guard_work_actor(actor_type, "confirm the job schedule")

    if new_status == CaseStatus.IN_PROGRESS:
        return _guard_work_actor(actor_type, "start the job")

    if new_status == CaseStatus.RESOLVED:
        return _guard_work_actor(actor_type, "complete the job")

    # New -> In Review is reached by marketplace accept or direct assignment
    return TransitionResult(allowed=True)


def get_valid_transitions(
    current_status: CaseStatus,
    actor_type: ActorType = ActorType.SYSTEM,
    *,
    resume_status: Optional[CaseStatus] = None,
) -> list[CaseStatus]:
    """Return the list of statuses that the given actor can transition to
    from the current status.

    Useful for UI hints (e.g. showing available actions to the user).
    """
    candidates = VALID_TRANSITIONS.get(current_status, set())
    valid: list[CaseStatus] = []
    for target in candidates:
        result = validate_transition(
            current_status, target, actor_type, resume_status=resume_status,
        )
        if result.allowed:
            valid.append(target)
    return sorted(valid, key=lambda s: s.value)


def effective_status(status: CaseStatus, resume_status: Optional[CaseStatus]) -> CaseStatus:
    """Status used for the assignment/schedule invariants (On Hold resolves
    to the status the case will resume to)."""
    if status == CaseStatus.ON_HOLD and resume_status is not None:
        return resume_status
    return status


def check_invariants(
    status: CaseStatus,
    resume_status: Optional[CaseStatus],
    assigned_contractor_id: object,
    scheduled_start_at: object,
) -> TransitionResult:
    """Verify the assignment and schedule invariants for a case snapshot."""
    current = effective_status(status, resume_status)
    if assigned_contractor_id is not None and current not in ASSIGNED_STATUSES:
        return TransitionResult(
            allowed=False,
            reason=f"Assigned case cannot be in '{current.value}' status.",
        )
    if scheduled_start_at is not None and current not in SCHEDULED_STATUSES:
        return TransitionResult(
            allowed=False,
            reason=f"Scheduled case cannot be in '{current.value}' status.",
        )
    return TransitionResult(allowed=True)
