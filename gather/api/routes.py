"""API routes - a thin request layer over the state machine and conflict services."""
from typing import List, Optional, Sequence

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from gather.api.schemas import (
    AcknowledgementResponse,
    AssignmentRecordResponse,
    AssignRequest,
    AuditEntryResponse,
    ConflictResetResponse,
    ConflictResponse,
    EventCreate,
    EventCreated,
    EventResponse,
    EventUpdate,
    FreezeCheckResponse,
    ItemCreate,
    ItemResponse,
    ItemUpdate,
    MembershipResponse,
    PersonAdd,
    RefusalResponse,
    RemovePersonResponse,
    RespondRequest,
    StatusTransitionRequest,
    TeamCreate,
    TeamResponse,
    TeamSummary,
)
from gather.database import get_db
from gather.models.domain import Assignment, Event, Item, PersonEvent, Team
from gather.models.enums import ConflictStatus, PersonRole
from gather.services import acknowledgements, conflicts
from gather.services.audit_log import AuditLog
from gather.services.consistency import compute_team_status
from gather.services.freeze_gate import check_freeze_readiness
from gather.services.identity import ActorScope, MembershipScopeResolver
from gather.services.state_machine import StateMachine

router = APIRouter()

REFUSALS = {
    400: {"model": RefusalResponse, "description": "Refusal - illegal transition or invalid input"},
    403: {"model": RefusalResponse, "description": "Refusal - not permitted in the current stage"},
}


def get_scope(
    event_id: int,
    x_person_id: int = Header(..., alias="X-Person-Id"),
    db: Session = Depends(get_db),
) -> ActorScope:
    """Caller's role in the event, as vouched for by the identity collaborator."""
    scope = MembershipScopeResolver(db).resolve(event_id, x_person_id)
    if scope is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return scope


def _require_role(scope: ActorScope, roles: Sequence[PersonRole]) -> None:
    if scope.role not in roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires role: {', '.join(r.value for r in roles)}",
        )


HOST_ONLY = (PersonRole.HOST,)
PLANNERS = (PersonRole.HOST, PersonRole.COORDINATOR)


def _item_in_event(db: Session, event_id: int, item_id: int) -> Item:
    item = db.query(Item).join(Team).filter(Item.id == item_id, Team.event_id == event_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def _assignment_in_event(db: Session, event_id: int, assignment_id: int) -> Assignment:
    assignment = (
        db.query(Assignment)
        .join(Item, Assignment.item_id == Item.id)
        .join(Team, Item.team_id == Team.id)
        .filter(Assignment.id == assignment_id, Team.event_id == event_id)
        .first()
    )
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return assignment


# Event endpoints
@router.post("/events", response_model=EventCreated, status_code=status.HTTP_201_CREATED)
def create_event(event_data: EventCreate, db: Session = Depends(get_db)):
    """Create a new event in DRAFT with its host."""
    details = event_data.model_dump(exclude={"name", "host_name", "host_email"})
    event = StateMachine(db).create_event(
        event_data.name,
        host_name=event_data.host_name,
        host_email=event_data.host_email,
        **details,
    )
    host = db.query(PersonEvent).filter(
        PersonEvent.event_id == event.id, PersonEvent.role == PersonRole.HOST
    ).first()
    return EventCreated(event=EventResponse.model_validate(event), host_person_id=host.person_id)


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: int, scope: ActorScope = Depends(get_scope), db: Session = Depends(get_db)):
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.patch("/events/{event_id}", response_model=EventResponse, responses=REFUSALS)
def update_event(
    event_id: int,
    changes: EventUpdate,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """
    Edit guest count, dietary counts or venue.
    Side effect: dismissed conflicts whose inputs moved are reopened.
    """
    _require_role(scope, HOST_ONLY)
    return StateMachine(db).update_event_details(
        event_id, scope.person_id, **changes.model_dump(exclude_unset=True)
    )


@router.post("/events/{event_id}/status", response_model=EventResponse, responses=REFUSALS)
def transition_status(
    event_id: int,
    request: StatusTransitionRequest,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """
    Move the event through its lifecycle.

    WILL REFUSE if:
    - the move is not in the lifecycle graph (COMPLETE is terminal)
    - freezing while any item lacks a usable assignment
    - unfreezing without a reason
    """
    _require_role(scope, HOST_ONLY)
    return StateMachine(db).transition_status(
        event_id, request.status, scope.person_id, reason=request.reason
    )


@router.get("/events/{event_id}/freeze-check", response_model=FreezeCheckResponse)
def freeze_check(event_id: int, scope: ActorScope = Depends(get_scope), db: Session = Depends(get_db)):
    """Freeze readiness without freezing. Counts come straight from the assignment table."""
    _require_role(scope, PLANNERS)
    readiness = check_freeze_readiness(db, event_id)
    return FreezeCheckResponse(
        can_freeze=readiness.can_freeze,
        gap_count=readiness.gap_count,
        unassigned_count=readiness.unassigned_count,
        declined_count=readiness.declined_count,
        critical_gap_count=readiness.critical_gap_count,
        total_items=readiness.total_items,
    )


# Team and item endpoints
@router.get("/events/{event_id}/teams", response_model=List[TeamSummary])
def list_teams(event_id: int, scope: ActorScope = Depends(get_scope), db: Session = Depends(get_db)):
    teams = db.query(Team).filter(Team.event_id == event_id).order_by(Team.id).all()
    return [
        TeamSummary(
            **TeamResponse.model_validate(team).model_dump(),
            status=compute_team_status(team.items),
        )
        for team in teams
    ]


@router.post(
    "/events/{event_id}/teams",
    response_model=TeamResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def create_team(
    event_id: int,
    team_data: TeamCreate,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, HOST_ONLY)
    return StateMachine(db).create_team(
        event_id,
        scope.person_id,
        team_data.name,
        scope=team_data.scope,
        coordinator_id=team_data.coordinator_id,
    )


@router.post(
    "/events/{event_id}/teams/{team_id}/items",
    response_model=ItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def create_item(
    event_id: int,
    team_id: int,
    item_data: ItemCreate,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, PLANNERS)
    team = db.query(Team).filter(Team.id == team_id, Team.event_id == event_id).first()
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return StateMachine(db).create_item(team.id, scope.person_id, **item_data.model_dump())


@router.patch("/events/{event_id}/items/{item_id}", response_model=ItemResponse, responses=REFUSALS)
def edit_item(
    event_id: int,
    item_id: int,
    changes: ItemUpdate,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, PLANNERS)
    _item_in_event(db, event_id, item_id)
    return StateMachine(db).edit_item(item_id, scope.person_id, **changes.model_dump(exclude_unset=True))


@router.delete(
    "/events/{event_id}/items/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=REFUSALS,
)
def delete_item(
    event_id: int,
    item_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """Delete an item. Critical items cannot be deleted once the event is CONFIRMING."""
    _require_role(scope, PLANNERS)
    _item_in_event(db, event_id, item_id)
    StateMachine(db).delete_item(item_id, scope.person_id)


@router.post(
    "/events/{event_id}/items/{item_id}/assign",
    response_model=AssignmentRecordResponse,
    responses=REFUSALS,
)
def assign_item(
    event_id: int,
    item_id: int,
    request: AssignRequest,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, PLANNERS)
    _item_in_event(db, event_id, item_id)
    return StateMachine(db).assign_item(item_id, request.person_id, scope.person_id)


@router.delete(
    "/events/{event_id}/items/{item_id}/assign",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=REFUSALS,
)
def unassign_item(
    event_id: int,
    item_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, PLANNERS)
    _item_in_event(db, event_id, item_id)
    StateMachine(db).unassign_item(item_id, scope.person_id)


@router.post(
    "/events/{event_id}/assignments/{assignment_id}/response",
    response_model=AssignmentRecordResponse,
)
def respond_to_assignment(
    event_id: int,
    assignment_id: int,
    request: RespondRequest,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """Accept or decline your own assignment. Works while FROZEN; repeats are no-ops."""
    _assignment_in_event(db, event_id, assignment_id)
    return StateMachine(db).respond_to_assignment(assignment_id, scope.person_id, request.response)


# People endpoints
@router.post(
    "/events/{event_id}/people",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def add_person(
    event_id: int,
    person_data: PersonAdd,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, HOST_ONLY)
    return StateMachine(db).add_person(event_id, scope.person_id, **person_data.model_dump())


@router.delete(
    "/events/{event_id}/people/{person_id}",
    response_model=RemovePersonResponse,
    responses=REFUSALS,
)
def remove_person(
    event_id: int,
    person_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """Remove a person. Every item they held is released and audited individually."""
    _require_role(scope, HOST_ONLY)
    released = StateMachine(db).remove_person(event_id, person_id, scope.person_id)
    return RemovePersonResponse(person_id=person_id, items_released=released)


# Audit endpoints
@router.get("/events/{event_id}/audit", response_model=List[AuditEntryResponse])
def list_audit_entries(
    event_id: int,
    action_type: Optional[str] = None,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, HOST_ONLY)
    return AuditLog(db).entries_for_event(event_id, action_type=action_type)


# Conflict endpoints
@router.get("/events/{event_id}/conflicts", response_model=List[ConflictResponse])
def list_conflicts(
    event_id: int,
    conflict_status: Optional[ConflictStatus] = None,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    return conflicts.list_conflicts(db, event_id, status=conflict_status)


@router.post("/events/{event_id}/conflicts/reset", response_model=List[ConflictResetResponse])
def reset_dismissed_conflicts(
    event_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """Reopen dismissed conflicts whose recorded inputs have changed."""
    _require_role(scope, HOST_ONLY)
    return [
        ConflictResetResponse(conflict_id=r.conflict_id, reason=r.reason)
        for r in conflicts.reset_dismissed_conflicts(db, event_id)
    ]


@router.post("/events/{event_id}/conflicts/{conflict_id}/dismiss", response_model=ConflictResponse)
def dismiss_conflict(
    event_id: int,
    conflict_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, HOST_ONLY)
    return conflicts.dismiss_conflict(db, event_id, conflict_id, scope.person_id)


@router.post("/events/{event_id}/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
def resolve_conflict(
    event_id: int,
    conflict_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, HOST_ONLY)
    return conflicts.resolve_conflict(db, event_id, conflict_id, scope.person_id)


@router.post(
    "/events/{event_id}/conflicts/{conflict_id}/delegate",
    response_model=ConflictResponse,
    responses=REFUSALS,
)
def delegate_conflict(
    event_id: int,
    conflict_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    _require_role(scope, HOST_ONLY)
    return conflicts.delegate_conflict(db, event_id, conflict_id, scope.person_id)


@router.post(
    "/events/{event_id}/conflicts/{conflict_id}/acknowledge",
    response_model=AcknowledgementResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def acknowledge_conflict(
    event_id: int,
    conflict_id: int,
    request: acknowledgements.AcknowledgementRequest,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    """
    Formally accept the risk of a Critical conflict.
    Any previous acknowledgement is superseded, not deleted.
    """
    _require_role(scope, HOST_ONLY)
    return acknowledgements.acknowledge_conflict(db, event_id, conflict_id, scope.person_id, request)


@router.get(
    "/events/{event_id}/conflicts/{conflict_id}/acknowledgements",
    response_model=List[AcknowledgementResponse],
)
def acknowledgement_history(
    event_id: int,
    conflict_id: int,
    scope: ActorScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    return acknowledgements.acknowledgement_history(db, event_id, conflict_id)
