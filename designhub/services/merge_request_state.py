"""
Merge Request State Machine.

Explicit state transitions for the merge-request lifecycle.
Never mutate ``DesignMergeRequest.status`` directly; always compute the next
state with :func:`next_status`.

States:
    OPEN      — Awaiting reviews (initial)
    APPROVED  — Approval tally reached the project's threshold
    MERGED    — Source snapshot taken into the target; may still be reverted
    REVERTED  — A merged request whose merge was undone
    CLOSED    — Withdrawn without merging
    REJECTED  — Reserved; no event leads here

Events:
    APPROVE          OPEN → OPEN | APPROVED (by tally); APPROVED → APPROVED
    REQUEST_CHANGES  OPEN | APPROVED → OPEN
    MERGE            APPROVED → MERGED; OPEN → MERGED only when the project
                     does not require approval
    REVERT           MERGED → REVERTED
    CLOSE            OPEN | APPROVED → CLOSED

The approval threshold is ``max(1, min_reviews)``: a request never becomes
approved before at least one reviewer has approved it.
"""

from __future__ import annotations

import logging
from enum import Enum

from designhub.errors import ConflictError

logger = logging.getLogger(__name__)


class MergeRequestStatus(str, Enum):
    """Merge-request lifecycle states."""

    OPEN = "open"
    APPROVED = "approved"
    MERGED = "merged"
    CLOSED = "closed"
    REJECTED = "rejected"
    REVERTED = "reverted"


class MergeRequestEvent(str, Enum):
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    MERGE = "merge"
    REVERT = "revert"
    CLOSE = "close"


# Statuses that count as "in flight" and block deleting the source branch.
ACTIVE_STATUSES: frozenset[MergeRequestStatus] = frozenset({
    MergeRequestStatus.OPEN,
    MergeRequestStatus.APPROVED,
})

# (from_state, event) -> set of valid to_states.
_TRANSITIONS: dict[tuple[MergeRequestStatus, MergeRequestEvent], frozenset[MergeRequestStatus]] = {
    (MergeRequestStatus.OPEN, MergeRequestEvent.APPROVE): frozenset({
        MergeRequestStatus.OPEN,
        MergeRequestStatus.APPROVED,
    }),
    (MergeRequestStatus.APPROVED, MergeRequestEvent.APPROVE): frozenset({
        MergeRequestStatus.APPROVED,
    }),
    (MergeRequestStatus.OPEN, MergeRequestEvent.REQUEST_CHANGES): frozenset({
        MergeRequestStatus.OPEN,
    }),
    (MergeRequestStatus.APPROVED, MergeRequestEvent.REQUEST_CHANGES): frozenset({
        MergeRequestStatus.OPEN,
    }),
    (MergeRequestStatus.OPEN, MergeRequestEvent.MERGE): frozenset({
        MergeRequestStatus.MERGED,
    }),
    (MergeRequestStatus.APPROVED, MergeRequestEvent.MERGE): frozenset({
        MergeRequestStatus.MERGED,
    }),
    (MergeRequestStatus.MERGED, MergeRequestEvent.REVERT): frozenset({
        MergeRequestStatus.REVERTED,
    }),
    (MergeRequestStatus.OPEN, MergeRequestEvent.CLOSE): frozenset({
        MergeRequestStatus.CLOSED,
    }),
    (MergeRequestStatus.APPROVED, MergeRequestEvent.CLOSE): frozenset({
        MergeRequestStatus.CLOSED,
    }),
}


class InvalidTransitionError(ConflictError):
    """Raised when an event is not allowed from the current state."""

    def __init__(
        self,
        from_state: MergeRequestStatus,
        event: MergeRequestEvent,
        reason: str | None = None,
    ):
        self.from_state = from_state
        self.event = event
        super().__init__(
            reason or f"Cannot {event.value.replace('_', ' ')} a merge request that is {from_state.value}"
        )


def approval_threshold(min_reviews: int) -> int:
    """Approvals needed to reach APPROVED."""
    return max(1, min_reviews)


def assert_transition(
    from_state: MergeRequestStatus,
    event: MergeRequestEvent,
    to_state: MergeRequestStatus,
) -> None:
    """Raise InvalidTransitionError unless ``event`` may move ``from_state`` to ``to_state``."""
    allowed = _TRANSITIONS.get((from_state, event), frozenset())
    if to_state not in allowed:
        raise InvalidTransitionError(from_state, event)


def next_status(
    current: MergeRequestStatus | str,
    event: MergeRequestEvent,
    *,
    approved_count: int = 0,
    min_reviews: int = 2,
    require_approval: bool = True,
) -> MergeRequestStatus:
    """Return the state ``event`` leads to from ``current``.

    ``approved_count`` is the tally *after* the acting reviewer's status has
    been recorded.
    """
    current = MergeRequestStatus(current)

    if event is MergeRequestEvent.APPROVE:
        if approved_count >= approval_threshold(min_reviews):
            target = MergeRequestStatus.APPROVED
        else:
            target = current
    elif event is MergeRequestEvent.REQUEST_CHANGES:
        target = MergeRequestStatus.OPEN
    elif event is MergeRequestEvent.MERGE:
        if require_approval and current is MergeRequestStatus.OPEN:
            raise InvalidTransitionError(
                current, event, "Merge request must be approved before merging"
            )
        target = MergeRequestStatus.MERGED
    elif event is MergeRequestEvent.REVERT:
        target = MergeRequestStatus.REVERTED
    else:
        target = MergeRequestStatus.CLOSED

    assert_transition(current, event, target)
    if target is not current:
        logger.debug(f"Merge request transition {current.value} → {target.value} ({event.value})")
    return target
