"""
Status graph and mutation gate.

Both are pure lookups: no I/O, no locks, no side effects. Callers pass the
stage they read inside their own transaction and must obey the answer before
touching any data.
"""
from typing import Dict, FrozenSet, Union

from gather.exceptions import MutationNotPermittedError
from gather.models.enums import EventStatus, MutationAction

# Fixed adjacency table. Same-stage requests are handled in can_transition.
#   DRAFT → CONFIRMING      always
#   CONFIRMING → FROZEN     only after the freeze readiness gate passes (caller)
#   FROZEN → CONFIRMING     override, caller must demand a reason
#   FROZEN → COMPLETE       always
#   COMPLETE → *            never
TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.CONFIRMING}),
    EventStatus.CONFIRMING: frozenset({EventStatus.FROZEN}),
    EventStatus.FROZEN: frozenset({EventStatus.CONFIRMING, EventStatus.COMPLETE}),
    EventStatus.COMPLETE: frozenset(),
}


def can_transition(from_status: EventStatus, to_status: EventStatus) -> bool:
    """
    Is from_status → to_status an edge of the lifecycle graph?

    A → A is accepted for every non-terminal stage so callers can treat a
    repeated request as an idempotent no-op. COMPLETE is terminal with no
    exceptions, including COMPLETE → COMPLETE.
    """
    from_status = EventStatus(from_status)
    to_status = EventStatus(to_status)

    if from_status == EventStatus.COMPLETE:
        return False
    if from_status == to_status:
        return True
    return to_status in TRANSITIONS[from_status]


def is_override(from_status: EventStatus, to_status: EventStatus) -> bool:
    """FROZEN → CONFIRMING reopens a locked plan and needs a reason plus an extra audit entry."""
    return EventStatus(from_status) == EventStatus.FROZEN and EventStatus(to_status) == EventStatus.CONFIRMING


def can_mutate(
    stage: EventStatus,
    action: Union[MutationAction, str],
    item_critical: bool = False,
) -> bool:
    """
    Is `action` allowed while the event is in `stage`?

    Precedence:
    1. COMPLETE denies everything
    2. FROZEN denies everything
    3. CONFIRMING denies deleting a critical item, allows the rest
    4. DRAFT allows everything

    item_critical only matters for deleteItem.
    """
    stage = EventStatus(stage)
    action = MutationAction(action)

    if stage == EventStatus.COMPLETE:
        return False
    if stage == EventStatus.FROZEN:
        return False
    if stage == EventStatus.CONFIRMING:
        return not (action == MutationAction.DELETE_ITEM and item_critical)
    return True


def require_mutation(
    stage: EventStatus,
    action: Union[MutationAction, str],
    item_critical: bool = False,
) -> None:
    """Raise MutationNotPermittedError unless can_mutate allows the action."""
    if can_mutate(stage, action, item_critical):
        return

    stage = EventStatus(stage)
    action = MutationAction(action)
    if stage == EventStatus.CONFIRMING:
        raise MutationNotPermittedError(
            stage,
            action,
            "Cannot delete a critical item while event is CONFIRMING",
        )
    raise MutationNotPermittedError(stage, action)
