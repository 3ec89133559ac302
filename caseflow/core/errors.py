"""
Work-order error taxonomy.

Every failure that the lifecycle, marketplace, quote and negotiation services
can report to a caller is one of the closed ``ErrorKind`` values below. The
services raise ``WorkflowError`` subclasses inside the request transaction;
the API boundary turns them into tagged results (see ``core.results``) so
callers never have to parse exception text.

Side-effect failures (reminders, chat messages, notifications) are not part
of this taxonomy: they are recovered by the outbox dispatcher and never
surface as an operation failure.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    VALIDATION = "validation_error"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_STATE = "invalid_state"
    ALREADY_ASSIGNED = "already_assigned"
    ALREADY_EXISTS = "already_exists"
    CONFLICTING_ROUND = "conflicting_round"
    SLOT_CONFLICT = "slot_conflict"
    INTERNAL = "internal_error"


# Human-readable labels rendered by UI/API layers.
ERROR_LABELS: dict[ErrorKind, str] = {
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.ACCESS_DENIED: "Access Denied",
    ErrorKind.VALIDATION: "Invalid Input",
    ErrorKind.INVALID_TRANSITION: "Invalid Transition",
    ErrorKind.INVALID_STATE: "Invalid State",
    ErrorKind.ALREADY_ASSIGNED: "Already Assigned",
    ErrorKind.ALREADY_EXISTS: "Already Exists",
    ErrorKind.CONFLICTING_ROUND: "Negotiation Round In Progress",
    ErrorKind.SLOT_CONFLICT: "Slot Conflict",
    ErrorKind.INTERNAL: "Something went wrong",
}


class WorkflowError(Exception):
    """Base class for every typed, caller-visible failure."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(WorkflowError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with id '{entity_id}' not found.")


class AccessDeniedError(WorkflowError):
    kind = ErrorKind.ACCESS_DENIED


class ValidationError(WorkflowError):
    """Malformed input, rejected before any write."""

    kind = ErrorKind.VALIDATION


class InvalidTransitionError(WorkflowError):
    """Raised when a work-order status change is not legal from the current state."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidStateError(WorkflowError):
    """Raised when a quote operation does not apply to the quote's status."""

    kind = ErrorKind.INVALID_STATE


class AlreadyAssignedError(WorkflowError):
    kind = ErrorKind.ALREADY_ASSIGNED

    def __init__(self, case_id: object) -> None:
        self.case_id = case_id
        super().__init__(f"Case '{case_id}' has already been assigned to a contractor.")


class AlreadyExistsError(WorkflowError):
    kind = ErrorKind.ALREADY_EXISTS


class ConflictingRoundError(WorkflowError):
    kind = ErrorKind.CONFLICTING_ROUND

    def __init__(self, quote_id: object) -> None:
        self.quote_id = quote_id
        super().__init__(
            f"Quote '{quote_id}' already has a pending counter-proposal. "
            "The other party must respond before a new round can start."
        )


class SlotConflictError(WorkflowError):
    kind = ErrorKind.SLOT_CONFLICT

    def __init__(self, message: str = "Time slot conflicts with an existing appointment.") -> None:
        super().__init__(message)
