"""
Acknowledgement ledger for critical conflicts.

A host formally accepts the risk of a CRITICAL finding. Acknowledgements form
a supersede chain per conflict: recording a new one retires the current
ACTIVE row instead of deleting it, so the whole history stays queryable.
"""
import logging
import re
from typing import List, Optional

from pydantic import BaseModel, StrictBool
from sqlalchemy.orm import Session

from gather.database import unit_of_work
from gather.exceptions import AcknowledgementValidationError
from gather.models.audit import AuditActionType
from gather.models.domain import Acknowledgement, Conflict
from gather.models.enums import (
    AcknowledgementStatus,
    AlternativesConsidered,
    ConflictSeverity,
    ConflictStatus,
    CoordinatorVisibility,
    MitigationPlanType,
)
from gather.services.audit_log import AuditLog
from gather.services.conflicts import get_conflict

logger = logging.getLogger(__name__)

MIN_IMPACT_STATEMENT_LENGTH = 10

# Who is affected ...
AFFECTED_PARTY_PATTERN = re.compile(
    r"guest|vegetarian|vegan|gluten|dairy|participant|coordinator|person|people",
    re.IGNORECASE,
)
# ... or what will be done about it
MITIGATION_ACTION_PATTERN = re.compile(
    r"communicate|notify|inform|substitute|replace|reassign|provide|bring|cater|accept|gap|external",
    re.IGNORECASE,
)


class Visibility(BaseModel):
    """Who gets to see an acknowledgement."""
    cohosts: bool = True
    coordinators: CoordinatorVisibility = CoordinatorVisibility.RELEVANT_ONLY
    participants: bool = False


class AcknowledgementRequest(BaseModel):
    impact_statement: str
    impact_understood: StrictBool
    mitigation_plan_type: str
    alternatives_considered: AlternativesConsidered = AlternativesConsidered.NONE
    visibility: Optional[Visibility] = None


def validate_impact_statement(statement: Optional[str]) -> str:
    """Return the stripped statement or raise naming the rule it breaks."""
    statement = (statement or "").strip()

    if len(statement) < MIN_IMPACT_STATEMENT_LENGTH:
        raise AcknowledgementValidationError(
            "impact_statement_length",
            f"Impact statement must be at least {MIN_IMPACT_STATEMENT_LENGTH} characters",
        )

    if not (AFFECTED_PARTY_PATTERN.search(statement) or MITIGATION_ACTION_PATTERN.search(statement)):
        raise AcknowledgementValidationError(
            "impact_statement_reference",
            "Impact statement must reference affected parties or mitigation action",
            hint=(
                'Mention who is affected (e.g., "vegetarian guests") or what action you will take '
                '(e.g., "communicate with guests", "provide substitute")'
            ),
        )

    return statement


def _validate_request(conflict: Conflict, request: AcknowledgementRequest):
    if conflict.severity != ConflictSeverity.CRITICAL:
        raise AcknowledgementValidationError(
            "severity", "Only Critical conflicts can be acknowledged"
        )

    statement = validate_impact_statement(request.impact_statement)

    if request.impact_understood is not True:
        raise AcknowledgementValidationError(
            "impact_understood", "You must confirm that you understand the impact"
        )

    try:
        mitigation = MitigationPlanType(request.mitigation_plan_type)
    except ValueError:
        raise AcknowledgementValidationError(
            "mitigation_plan_type", "Invalid mitigation plan type"
        )

    return statement, mitigation


def get_active_acknowledgement(db: Session, conflict_id: int) -> Optional[Acknowledgement]:
    return (
        db.query(Acknowledgement)
        .filter(
            Acknowledgement.conflict_id == conflict_id,
            Acknowledgement.status == AcknowledgementStatus.ACTIVE,
        )
        .with_for_update()
        .first()
    )


def acknowledge_conflict(
    db: Session,
    event_id: int,
    conflict_id: int,
    actor_id: int,
    request: AcknowledgementRequest,
) -> Acknowledgement:
    """
    Record a host's acceptance of a critical conflict.

    In one unit of work:
    1. the current ACTIVE acknowledgement (if any) becomes SUPERSEDED
    2. a new ACTIVE acknowledgement is created pointing back at it
    3. the conflict moves to ACKNOWLEDGED
    4. ACKNOWLEDGE_CONFLICT is audited
    """
    with unit_of_work(db):
        conflict = get_conflict(db, event_id, conflict_id)
        statement, mitigation = _validate_request(conflict, request)
        visibility = request.visibility or Visibility()

        previous = get_active_acknowledgement(db, conflict.id)
        supersedes_id = None
        if previous is not None:
            previous.status = AcknowledgementStatus.SUPERSEDED
            supersedes_id = previous.id
            # Retire the old head before the new one exists
            db.flush()

        acknowledgement = Acknowledgement(
            conflict_id=conflict.id,
            event_id=event_id,
            acknowledged_by=actor_id,
            impact_statement=statement,
            impact_understood=True,
            mitigation_plan_type=mitigation,
            affected_parties=list(conflict.affected_parties or []),
            alternatives_considered=request.alternatives_considered,
            visibility_cohosts=visibility.cohosts,
            visibility_coordinators=visibility.coordinators,
            visibility_participants=visibility.participants,
            supersedes_acknowledgement_id=supersedes_id,
            status=AcknowledgementStatus.ACTIVE,
        )
        db.add(acknowledgement)

        conflict.status = ConflictStatus.ACKNOWLEDGED
        db.flush()

        AuditLog(db).append(
            event_id=event_id,
            actor_id=actor_id,
            action_type=AuditActionType.ACKNOWLEDGE_CONFLICT,
            target_type="Conflict",
            target_id=conflict.id,
            details=f"Acknowledged critical conflict ({mitigation.value}): {statement}",
            payload={
                "acknowledgement_id": acknowledgement.id,
                "supersedes_acknowledgement_id": supersedes_id,
            },
        )

    if supersedes_id is not None:
        logger.info(
            "Acknowledgement %s superseded %s on conflict %s",
            acknowledgement.id,
            supersedes_id,
            conflict_id,
        )
    return acknowledgement


def acknowledgement_history(db: Session, event_id: int, conflict_id: int) -> List[Acknowledgement]:
    """The supersede chain, newest first, starting from the current head."""
    conflict = get_conflict(db, event_id, conflict_id)

    head = (
        db.query(Acknowledgement)
        .filter(Acknowledgement.conflict_id == conflict.id)
        .order_by(Acknowledgement.id.desc())
        .first()
    )
    chain = []
    current = head
    while current is not None:
        chain.append(current)
        current = current.supersedes
    return chain
