# Overview: Return/exchange status machine: the single place that decides which moves are legal.

from __future__ import annotations

from ..models.enums import ReturnAction, ReturnStatus


class ReturnError(Exception):
    """Raised for return operation errors."""

    code = "return_error"


class IllegalTransitionError(ReturnError):
    """The requested action is not allowed from the record's current status."""

    code = "illegal_transition"

    def __init__(self, current: ReturnStatus, action: ReturnAction):
        self.current = current
        self.action = action
        super().__init__(f"cannot {action.value} a return that is {current.value}")


class ReconciliationError(ReturnError):
    """Stored amounts no longer match the item snapshots they were computed from."""

    code = "reconciliation_error"


TRANSITIONS: dict[tuple[ReturnStatus, ReturnAction], ReturnStatus] = {
    (ReturnStatus.PENDING, ReturnAction.APPROVE): ReturnStatus.APPROVED,
    (ReturnStatus.PENDING, ReturnAction.REJECT): ReturnStatus.REJECTED,
    (ReturnStatus.APPROVED, ReturnAction.COMPLETE): ReturnStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({ReturnStatus.REJECTED, ReturnStatus.COMPLETED})


def next_status(current, action) -> ReturnStatus:
    """Target status for `action`, or IllegalTransitionError."""
    current = ReturnStatus(current)
    action = ReturnAction(action)
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise IllegalTransitionError(current, action)
    return target


def allowed_actions(current) -> tuple[ReturnAction, ...]:
    current = ReturnStatus(current)
    return tuple(action for (state, action) in TRANSITIONS if state is current)


def is_terminal(current) -> bool:
    return ReturnStatus(current) in TERMINAL_STATUSES
