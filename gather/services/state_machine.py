"""
Event state machine - every state-changing action on an event goes through here.

Each public method is one unit of work:

    load authoritative state → gate → mutate → repair → audit → commit

and any exception along the way rolls the whole thing back. Nothing here is
retried: the lifecycle stage may have moved between attempts, so callers
must come back through the gate.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from gather.database import unit_of_work
from gather.exceptions import (
    FreezeNotReadyError,
    IllegalTransitionError,
    MissingOverrideReasonError,
    MutationNotPermittedError,
    NotFoundError,
    StaleEventError,
    ValidationError,
)
from gather.models.audit import AuditActionType
from gather.models.domain import Assignment, Event, Item, Person, PersonEvent, Team
from gather.models.enums import (
    AssignmentResponse,
    EventStatus,
    MutationAction,
    PersonRole,
    StructureMode,
)
from gather.services.audit_log import AuditLog
from gather.services.conflicts import reset_dismissed_conflicts
from gather.services.consistency import repair_item_status
from gather.services.freeze_gate import check_freeze_readiness
from gather.services.lifecycle import can_transition, is_override, require_mutation

logger = logging.getLogger(__name__)

EVENT_DETAIL_FIELDS = frozenset({
    "name",
    "guest_count",
    "dietary_vegetarian",
    "dietary_vegan",
    "dietary_gluten_free",
    "dietary_dairy_free",
    "venue",
})

ITEM_FIELDS = frozenset({"name", "quantity", "critical", "serve_time", "notes"})


@dataclass(frozen=True)
class StatusChange:
    """Handed to status listeners after a transition has committed."""
    event_id: int
    from_status: EventStatus
    to_status: EventStatus
    actor_id: int
    reason: Optional[str] = None


StatusListener = Callable[[StatusChange], None]


class StateMachine:
    """Enforces lifecycle transitions, mutation gating and assignment consistency."""

    def __init__(self, db: Session, listeners: Optional[List[StatusListener]] = None):
        self.db = db
        self.audit = AuditLog(db)
        self._listeners: List[StatusListener] = list(listeners or [])

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register an external notifier. Listeners never block or undo a transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _get_event(self, event_id: int, for_update: bool = False) -> Event:
        query = self.db.query(Event).filter(Event.id == event_id)
        if for_update:
            query = query.with_for_update()
        event = query.first()
        if event is None:
            raise NotFoundError("Event", event_id)
        return event

    def _get_item(self, item_id: int) -> Item:
        item = self.db.query(Item).filter(Item.id == item_id).first()
        if item is None:
            raise NotFoundError("Item", item_id)
        return item

    def _get_team(self, team_id: int) -> Team:
        team = self.db.query(Team).filter(Team.id == team_id).first()
        if team is None:
            raise NotFoundError("Team", team_id)
        return team

    def _get_membership(self, event_id: int, person_id: int) -> Optional[PersonEvent]:
        return self.db.query(PersonEvent).filter(
            PersonEvent.event_id == event_id,
            PersonEvent.person_id == person_id,
        ).first()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def create_event(
        self,
        name: str,
        host_name: str,
        host_email: Optional[str] = None,
        **details: Any,
    ) -> Event:
        """Create an event in DRAFT with its host as the first member."""
        unknown = set(details) - EVENT_DETAIL_FIELDS
        if unknown:
            raise ValidationError(f"Unknown event fields: {', '.join(sorted(unknown))}")

        with unit_of_work(self.db):
            event = Event(name=name, status=EventStatus.DRAFT, **details)
            host = Person(name=host_name, email=host_email)
            self.db.add_all([event, host])
            self.db.flush()

            self.db.add(PersonEvent(person_id=host.id, event_id=event.id, role=PersonRole.HOST))
            self.audit.append(
                event_id=event.id,
                actor_id=host.id,
                action_type=AuditActionType.CREATE_EVENT,
                target_type="Event",
                target_id=event.id,
                details=f"Created event {name}",
            )

        logger.info("Created event %s (%s)", event.id, name)
        return event

    def update_event_details(self, event_id: int, actor_id: int, **changes: Any) -> Event:
        """
        Edit guest count, dietary counts, venue or name.

        Refused only once the event is COMPLETE. When anything actually
        changed, dismissed conflicts are re-checked after the commit.
        """
        unknown = set(changes) - EVENT_DETAIL_FIELDS
        if unknown:
            raise ValidationError(f"Unknown event fields: {', '.join(sorted(unknown))}")

        try:
            with unit_of_work(self.db):
                event = self._get_event(event_id, for_update=True)
                if event.status == EventStatus.COMPLETE:
                    raise MutationNotPermittedError(event.status, "editEvent")

                changed: Dict[str, list] = {}
                for field, value in changes.items():
                    old = getattr(event, field)
                    if old != value:
                        changed[field] = [old, value]
                        setattr(event, field, value)

                if changed:
                    self.db.flush()
                    self.audit.append(
                        event_id=event.id,
                        actor_id=actor_id,
                        action_type=AuditActionType.EDIT_EVENT,
                        target_type="Event",
                        target_id=event.id,
                        details=f"Updated {', '.join(sorted(changed))}",
                        payload=changed,
                    )
        except StaleDataError:
            raise StaleEventError(f"Event {event_id} was modified concurrently")

        if changed:
            reset_dismissed_conflicts(self.db, event_id)
        return event

    def transition_status(
        self,
        event_id: int,
        target: EventStatus,
        actor_id: int,
        reason: Optional[str] = None,
    ) -> Event:
        """
        Move the event to `target`.

        - FROZEN → CONFIRMING needs a non-empty reason and writes an extra
          OVERRIDE_UNFREEZE entry
        - CONFIRMING → FROZEN re-runs the freeze readiness gate inside this
          transaction, against the assignment table
        - DRAFT → CONFIRMING locks the team structure
        - A → A on a non-terminal stage is accepted and does nothing
        """
        target = EventStatus(target)

        try:
            with unit_of_work(self.db):
                event = self._get_event(event_id, for_update=True)
                from_status = event.status

                if is_override(from_status, target) and not (reason and reason.strip()):
                    raise MissingOverrideReasonError()

                if not can_transition(from_status, target):
                    raise IllegalTransitionError(from_status, target)

                if from_status == target:
                    return event

                if target == EventStatus.FROZEN:
                    readiness = check_freeze_readiness(self.db, event.id)
                    if not readiness.can_freeze:
                        raise FreezeNotReadyError(from_status, target, readiness.gap_count)

                event.status = target
                if from_status == EventStatus.DRAFT and target == EventStatus.CONFIRMING:
                    event.structure_mode = StructureMode.LOCKED
                self.db.flush()

                self.audit.append(
                    event_id=event.id,
                    actor_id=actor_id,
                    action_type=AuditActionType.STATUS_CHANGE,
                    target_type="Event",
                    target_id=event.id,
                    details=f"Changed status from {from_status.value} to {target.value}",
                    payload={"from": from_status.value, "to": target.value},
                )

                if is_override(from_status, target):
                    self.audit.append(
                        event_id=event.id,
                        actor_id=actor_id,
                        action_type=AuditActionType.OVERRIDE_UNFREEZE,
                        target_type="Event",
                        target_id=event.id,
                        details=f"Host unfroze event. Reason: {reason.strip()}",
                        payload={"reason": reason.strip()},
                    )
        except StaleDataError:
            raise StaleEventError(
                f"Event {event_id} changed while transitioning to {target.value}; re-check and retry"
            )

        logger.info(
            "Event %s moved %s → %s",
            event_id,
            from_status.value,
            target.value,
            extra={"gather_event_id": event_id, "gather_actor_id": actor_id},
        )
        self._notify(StatusChange(event_id, from_status, target, actor_id, reason))
        return event

    def _notify(self, change: StatusChange) -> None:
        for listener in self._listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("Status listener %r failed for event %s", listener, change.event_id)

    # ------------------------------------------------------------------
    # Teams and items
    # ------------------------------------------------------------------

    def create_team(
        self,
        event_id: int,
        actor_id: int,
        name: str,
        scope: Optional[str] = None,
        coordinator_id: Optional[int] = None,
    ) -> Team:
        """Add a team. Only possible while the event structure is still editable."""
        with unit_of_work(self.db):
            event = self._get_event(event_id, for_update=True)
            if event.structure_locked or event.status != EventStatus.DRAFT:
                raise MutationNotPermittedError(
                    event.status,
                    "createTeam",
                    f"Cannot add teams once the event structure is locked ({event.status.value})",
                )

            team = Team(event_id=event.id, name=name, scope=scope, coordinator_id=coordinator_id)
            self.db.add(team)
            self.db.flush()

            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=AuditActionType.CREATE_TEAM,
                target_type="Team",
                target_id=team.id,
                details=f"Created team {name}",
            )
        return team

    def create_item(
        self,
        team_id: int,
        actor_id: int,
        name: str,
        critical: bool = False,
        quantity: Optional[str] = None,
        serve_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Item:
        with unit_of_work(self.db):
            team = self._get_team(team_id)
            event = self._get_event(team.event_id, for_update=True)
            require_mutation(event.status, MutationAction.CREATE_ITEM)

            item = Item(
                team_id=team.id,
                name=name,
                critical=critical,
                quantity=quantity,
                serve_time=serve_time,
                notes=notes,
            )
            self.db.add(item)
            self.db.flush()
            # New items start with no assignment; repair keeps the rule in one place
            repair_item_status(self.db, item.id)

            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=AuditActionType.CREATE_ITEM,
                target_type="Item",
                target_id=item.id,
                details=f"Created {'critical ' if critical else ''}item {name} in {team.name}",
            )
        return item

    def edit_item(self, item_id: int, actor_id: int, **changes: Any) -> Item:
        """Edit item fields. Dismissed conflicts are re-checked after the commit."""
        unknown = set(changes) - ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item fields: {', '.join(sorted(unknown))}")

        with unit_of_work(self.db):
            item = self._get_item(item_id)
            event = self._get_event(item.team.event_id, for_update=True)
            require_mutation(event.status, MutationAction.EDIT_ITEM)

            changed: Dict[str, list] = {}
            for field, value in changes.items():
                old = getattr(item, field)
                if old != value:
                    changed[field] = [old, value]
                    setattr(item, field, value)

            if changed:
                self.db.flush()
                self.audit.append(
                    event_id=event.id,
                    actor_id=actor_id,
                    action_type=AuditActionType.EDIT_ITEM,
                    target_type="Item",
                    target_id=item.id,
                    details=f"Updated {item.name}: {', '.join(sorted(changed))}",
                    payload=changed,
                )
            event_id = event.id

        if changed:
            reset_dismissed_conflicts(self.db, event_id)
        return item

    def delete_item(self, item_id: int, actor_id: int) -> None:
        """
        Delete an item. Critical items are protected once CONFIRMING.

        An assigned item is released first, so the log shows UNASSIGN_ITEM
        before DELETE_ITEM.
        """
        with unit_of_work(self.db):
            item = self._get_item(item_id)
            event = self._get_event(item.team.event_id, for_update=True)
            require_mutation(event.status, MutationAction.DELETE_ITEM, item_critical=item.critical)

            name = item.name
            if item.assignment is not None:
                person_name = item.assignment.person.name
                item.assignment = None
                self.db.flush()

                self.audit.append(
                    event_id=event.id,
                    actor_id=actor_id,
                    action_type=AuditActionType.UNASSIGN_ITEM,
                    target_type="Item",
                    target_id=item_id,
                    details=f"Unassigned {name} from {person_name} before deletion",
                )

            self.db.delete(item)
            self.db.flush()

            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=AuditActionType.DELETE_ITEM,
                target_type="Item",
                target_id=item_id,
                details=f"Deleted item {name}",
            )

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_item(self, item_id: int, person_id: int, actor_id: int) -> Assignment:
        """
        Assign (or reassign) an item to a team member.

        Reassigning replaces the existing row, so the response starts over at
        PENDING. Assigning to the current assignee is a no-op.
        """
        with unit_of_work(self.db):
            item = self._get_item(item_id)
            event = self._get_event(item.team.event_id, for_update=True)
            require_mutation(event.status, MutationAction.ASSIGN_ITEM)

            membership = self._get_membership(event.id, person_id)
            if membership is None:
                raise ValidationError("Person is not part of this event")
            if membership.team_id != item.team_id:
                raise ValidationError("Person must be in the same team as the item")

            previous = item.assignment
            if previous is not None and previous.person_id == person_id:
                return previous

            previous_person_id = previous.person_id if previous is not None else None
            if previous is not None:
                item.assignment = None
                self.db.flush()

            assignment = Assignment(person_id=person_id, response=AssignmentResponse.PENDING)
            item.assignment = assignment
            self.db.flush()
            repair_item_status(self.db, item.id)

            person = membership.person
            is_reassignment = previous_person_id is not None
            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=(
                    AuditActionType.REASSIGN_ITEM if is_reassignment else AuditActionType.ASSIGN_ITEM
                ),
                target_type="Item",
                target_id=item.id,
                details=f"{'Reassigned' if is_reassignment else 'Assigned'} {item.name} to {person.name}",
                payload={"person_id": person_id, "previous_person_id": previous_person_id},
            )
        return assignment

    def unassign_item(self, item_id: int, actor_id: int) -> None:
        with unit_of_work(self.db):
            item = self._get_item(item_id)
            event = self._get_event(item.team.event_id, for_update=True)
            require_mutation(event.status, MutationAction.ASSIGN_ITEM)

            assignment = item.assignment
            if assignment is None:
                raise ValidationError("Item has no assignment")

            person_name = assignment.person.name
            item.assignment = None
            self.db.flush()
            repair_item_status(self.db, item.id)

            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=AuditActionType.UNASSIGN_ITEM,
                target_type="Item",
                target_id=item.id,
                details=f"Unassigned {item.name} from {person_name}",
            )

    def respond_to_assignment(
        self,
        assignment_id: int,
        person_id: int,
        response: AssignmentResponse,
    ) -> Assignment:
        """
        The assignee accepts or declines.

        Not subject to the mutation gate, so it still works while FROZEN.
        Sending the same response again changes nothing and writes nothing.
        """
        response = AssignmentResponse(response)

        with unit_of_work(self.db):
            assignment = (
                self.db.query(Assignment)
                .filter(Assignment.id == assignment_id)
                .with_for_update()
                .first()
            )
            if assignment is None or assignment.person_id != person_id:
                raise NotFoundError("Assignment", assignment_id)

            if assignment.response == response:
                return assignment

            previous = assignment.response
            assignment.response = response
            assignment.responded_at = datetime.utcnow()
            self.db.flush()

            item = assignment.item
            self.audit.append(
                event_id=item.team.event_id,
                actor_id=person_id,
                action_type=AuditActionType.RESPOND_ASSIGNMENT,
                target_type="Assignment",
                target_id=assignment.id,
                details=f"{assignment.person.name} responded {response.value} for {item.name}",
                payload={"from": previous.value, "to": response.value},
            )
        return assignment

    # ------------------------------------------------------------------
    # People
    # ------------------------------------------------------------------

    def add_person(
        self,
        event_id: int,
        actor_id: int,
        name: Optional[str] = None,
        role: PersonRole = PersonRole.PARTICIPANT,
        team_id: Optional[int] = None,
        email: Optional[str] = None,
        person_id: Optional[int] = None,
    ) -> PersonEvent:
        """Add a new person, or an existing one by person_id, to the event."""
        role = PersonRole(role)

        with unit_of_work(self.db):
            event = self._get_event(event_id, for_update=True)
            require_mutation(event.status, MutationAction.ADD_PERSON)

            if team_id is not None:
                team = self._get_team(team_id)
                if team.event_id != event.id:
                    raise ValidationError("Team does not belong to this event")

            if person_id is not None:
                person = self.db.query(Person).filter(Person.id == person_id).first()
                if person is None:
                    raise NotFoundError("Person", person_id)
                if self._get_membership(event.id, person.id) is not None:
                    raise ValidationError(f"{person.name} is already part of this event")
            else:
                if not name or not name.strip():
                    raise ValidationError("A name is required to add a person")
                person = Person(name=name.strip(), email=email)
                self.db.add(person)
                self.db.flush()

            membership = PersonEvent(person_id=person.id, event_id=event.id, role=role, team_id=team_id)
            self.db.add(membership)
            self.db.flush()

            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=AuditActionType.ADD_PERSON,
                target_type="PersonEvent",
                target_id=person.id,
                details=f"Added {person.name} as {role.value}",
                payload={"team_id": team_id},
            )
        return membership

    def remove_person(self, event_id: int, person_id: int, actor_id: int) -> int:
        """
        Remove a person from the event and release every item they held.

        Writes REMOVE_PERSON first, then one UNASSIGN_ITEM per released item.
        Each item keeps the removed name in previously_assigned_to and is
        repaired before the next one. Returns the number of items released.
        """
        with unit_of_work(self.db):
            event = self._get_event(event_id, for_update=True)
            require_mutation(event.status, MutationAction.REMOVE_PERSON)

            membership = self._get_membership(event.id, person_id)
            if membership is None:
                raise NotFoundError("PersonEvent", person_id)
            person = membership.person

            self.audit.append(
                event_id=event.id,
                actor_id=actor_id,
                action_type=AuditActionType.REMOVE_PERSON,
                target_type="PersonEvent",
                target_id=person.id,
                details=f"Removed person {person.name} from event",
            )

            assignments = (
                self.db.query(Assignment)
                .join(Item, Assignment.item_id == Item.id)
                .join(Team, Item.team_id == Team.id)
                .filter(Assignment.person_id == person.id, Team.event_id == event.id)
                .order_by(Assignment.id)
                .all()
            )

            for assignment in assignments:
                item = assignment.item
                item.previously_assigned_to = (
                    f"{item.previously_assigned_to}, {person.name}"
                    if item.previously_assigned_to
                    else person.name
                )
                item.assignment = None
                self.db.flush()
                repair_item_status(self.db, item.id)

                self.audit.append(
                    event_id=event.id,
                    actor_id=actor_id,
                    action_type=AuditActionType.UNASSIGN_ITEM,
                    target_type="Item",
                    target_id=item.id,
                    details=f"Unassigned {item.name} due to removing person {person.name}",
                )

            self.db.query(Team).filter(
                Team.event_id == event.id, Team.coordinator_id == person.id
            ).update({Team.coordinator_id: None}, synchronize_session="fetch")
            self.db.delete(membership)
            self.db.flush()

        return len(assignments)
