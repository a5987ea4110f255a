"""
Display-path consistency for the denormalized Item.status field.

Item.status only makes listings cheap. Nothing safety-critical reads it:
the freeze gate (gather.services.freeze_gate) re-derives readiness from the
Assignment table and never calls into this module.
"""
from typing import Iterable

from sqlalchemy.orm import Session

from gather.exceptions import ConsistencyRepairError
from gather.models.domain import Assignment, Item
from gather.models.enums import AssignmentResponse, ItemStatus, TeamStatus


def derive_item_status(has_assignment: bool) -> ItemStatus:
    """ASSIGNED iff an Assignment row exists, whatever its response."""
    return ItemStatus.ASSIGNED if has_assignment else ItemStatus.UNASSIGNED


def repair_item_status(db: Session, item_id: int) -> ItemStatus:
    """
    Bring Item.status back in line with Assignment existence.

    Must be called after every assignment create/delete, inside the same unit
    of work. Never call it from a read path.

    Raises ConsistencyRepairError when the item is gone, which aborts the
    surrounding unit of work so the assignment mutation is rolled back too.
    """
    db.flush()

    item = db.query(Item).filter(Item.id == item_id).first()
    if item is None:
        raise ConsistencyRepairError(
            f"Item {item_id} disappeared while repairing its assignment status"
        )

    has_assignment = (
        db.query(Assignment.id).filter(Assignment.item_id == item_id).first() is not None
    )
    should_be = derive_item_status(has_assignment)

    if item.status != should_be:
        item.status = should_be
        db.flush()

    return should_be


def _has_gap(item: Item) -> bool:
    assignment = item.assignment
    return assignment is None or assignment.response == AssignmentResponse.DECLINED


def compute_team_status(items: Iterable[Item]) -> TeamStatus:
    """
    Rollup for team listings. A DECLINED assignment counts as a gap.

    Pure function over already-loaded items; it performs no queries.
    """
    items = list(items)
    if any(item.critical and _has_gap(item) for item in items):
        return TeamStatus.CRITICAL_GAP
    if any(_has_gap(item) for item in items):
        return TeamStatus.GAP
    return TeamStatus.SORTED
