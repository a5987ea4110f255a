"""
Freeze readiness gate.

Answers "may this event move from CONFIRMING to FROZEN?" by counting rows in
the Assignment table directly. Item.status is never read here: a stale or
badly repaired display field must not be able to produce a false
"ready to freeze".
"""
from dataclasses import dataclass

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session

from gather.models.domain import Assignment, Item, Team
from gather.models.enums import AssignmentResponse


@dataclass(frozen=True)
class FreezeReadiness:
    """Outcome of the freeze gate plus the counts used for messaging."""
    total_items: int
    unassigned_count: int
    declined_count: int
    critical_gap_count: int

    @property
    def gap_count(self) -> int:
        """Items without a usable assignment (missing or declined)."""
        return self.unassigned_count + self.declined_count

    @property
    def can_freeze(self) -> bool:
        return self.gap_count == 0


def check_freeze_readiness(db: Session, event_id: int) -> FreezeReadiness:
    """Count gaps under the event with one aggregate over items ⟕ assignments."""
    missing = Assignment.id.is_(None)
    declined = Assignment.response == AssignmentResponse.DECLINED

    total, unassigned, declined_count, critical_gaps = (
        db.query(
            func.count(Item.id),
            func.sum(case((missing, 1), else_=0)),
            func.sum(case((declined, 1), else_=0)),
            func.sum(case((and_(Item.critical.is_(True), or_(missing, declined)), 1), else_=0)),
        )
        .select_from(Item)
        .join(Team, Item.team_id == Team.id)
        .outerjoin(Assignment, Assignment.item_id == Item.id)
        .filter(Team.event_id == event_id)
        .one()
    )

    return FreezeReadiness(
        total_items=total or 0,
        unassigned_count=unassigned or 0,
        declined_count=declined_count or 0,
        critical_gap_count=critical_gaps or 0,
    )


def can_freeze(db: Session, event_id: int) -> bool:
    return check_freeze_readiness(db, event_id).can_freeze
