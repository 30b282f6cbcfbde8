# marketplace_finance/core/payout_state.py
"""
Payout queue item state machine.

Every status change on a payout_queue_items row goes through this table.
crud/payout_queue.py applies them as conditional UPDATEs (WHERE status =
<expected>), so a concurrent writer loses with an error instead of silently
overwriting.

    pending    -> processing   claim by a batch
    processing -> completed    payment collaborator returned a transaction id
    processing -> failed       decline or collaborator error
    failed     -> pending      explicit retry (attempts remaining)
    pending    -> cancelled    explicit cancel
"""
from __future__ import annotations

import enum

from marketplace_finance.core.errors import InvalidTransitionError


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.PROCESSING, PayoutStatus.CANCELLED}),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED}),
    PayoutStatus.FAILED: frozenset({PayoutStatus.PENDING}),
    PayoutStatus.COMPLETED: frozenset(),  # terminal
    PayoutStatus.CANCELLED: frozenset(),  # terminal
}

TRANSITION_ACTIONS: dict[tuple[PayoutStatus, PayoutStatus], str] = {
    (PayoutStatus.PENDING, PayoutStatus.PROCESSING): "claim",
    (PayoutStatus.PENDING, PayoutStatus.CANCELLED): "cancel",
    (PayoutStatus.PROCESSING, PayoutStatus.COMPLETED): "complete",
    (PayoutStatus.PROCESSING, PayoutStatus.FAILED): "fail",
    (PayoutStatus.FAILED, PayoutStatus.PENDING): "retry",
}


def _status(value) -> PayoutStatus:
    try:
        return PayoutStatus(value)
    except ValueError as e:
        raise InvalidTransitionError(f"Unknown payout status {value!r}") from e


def can_transition(current, new) -> bool:
    return _status(new) in PAYOUT_TRANSITIONS[_status(current)]


def is_terminal(status) -> bool:
    return not PAYOUT_TRANSITIONS[_status(status)]


def validate_transition(current, new) -> None:
    """
    Raise InvalidTransitionError unless current -> new is in the table.
    Unlike a generic status field, a same-state "transition" is NOT a no-op here:
    re-claiming a processing item would be a double submission.
    """
    cur, nxt = _status(current), _status(new)
    if nxt in PAYOUT_TRANSITIONS[cur]:
        return

    allowed = sorted(s.value for s in PAYOUT_TRANSITIONS[cur])
    if not allowed:
        raise InvalidTransitionError(
            f"Payout in '{cur.value}' status is terminal",
            current_status=cur.value,
            requested_status=nxt.value,
        )
    raise InvalidTransitionError(
        f"Cannot move payout from '{cur.value}' to '{nxt.value}'",
        current_status=cur.value,
        requested_status=nxt.value,
        allowed=allowed,
    )


def transition_action(current, new) -> str:
    cur, nxt = _status(current), _status(new)
    return TRANSITION_ACTIONS.get((cur, nxt), f"{cur.value} -> {nxt.value}")
