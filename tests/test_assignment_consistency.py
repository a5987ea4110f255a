"""
Tests for assignment consistency.

Item.status must equal "an Assignment row exists" after every committed
operation, whatever path got it there.
"""
import pytest

from gather.database import unit_of_work
from gather.exceptions import (
    ConsistencyRepairError,
    MutationNotPermittedError,
    NotFoundError,
    ValidationError,
)
from gather.models.audit import AuditActionType, AuditEntry
from gather.models.domain import Assignment, Item
from gather.models.enums import AssignmentResponse, EventStatus, ItemStatus, TeamStatus
from gather.services.consistency import compute_team_status, derive_item_status, repair_item_status

from conftest import advance_to, assign_everything


def assert_consistent(db_session):
    """Every item's status matches whether it has an assignment row."""
    db_session.expire_all()
    for item in db_session.query(Item).all():
        has_row = db_session.query(Assignment).filter(Assignment.item_id == item.id).count() == 1
        assert item.status == derive_item_status(has_row), item.name


class TestItemStatusInvariant:
    """Test that Item.status tracks Assignment existence."""

    def test_new_items_start_unassigned(self, db_session, planned_event):
        """
        INVARIANT: An item without an assignment is UNASSIGNED.
        """
        assert_consistent(db_session)
        turkey = db_session.get(Item, planned_event.turkey_id)
        assert turkey.status == ItemStatus.UNASSIGNED

    def test_assign_marks_item_assigned(self, db_session, sm, planned_event):
        ev = planned_event

        assignment = sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)

        assert assignment.response == AssignmentResponse.PENDING
        assert db_session.get(Item, ev.turkey_id).status == ItemStatus.ASSIGNED
        assert_consistent(db_session)

    def test_unassign_marks_item_unassigned(self, db_session, sm, planned_event):
        ev = planned_event
        sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)

        sm.unassign_item(ev.turkey_id, ev.host_id)

        assert db_session.query(Assignment).count() == 0
        assert db_session.get(Item, ev.turkey_id).status == ItemStatus.UNASSIGNED
        assert_consistent(db_session)

    def test_reassign_replaces_the_row_and_resets_response(self, db_session, sm, planned_event):
        """
        INVARIANT: At most one assignment per item; reassigning starts over at PENDING.
        """
        ev = planned_event
        first = sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)
        sm.respond_to_assignment(first.id, ev.ben_id, AssignmentResponse.ACCEPTED)

        second = sm.assign_item(ev.turkey_id, ev.cleo_id, ev.host_id)

        rows = db_session.query(Assignment).filter(Assignment.item_id == ev.turkey_id).all()
        assert len(rows) == 1
        assert rows[0].id == second.id
        assert rows[0].person_id == ev.cleo_id
        assert rows[0].response == AssignmentResponse.PENDING
        assert_consistent(db_session)

        reassigned = db_session.query(AuditEntry).filter(
            AuditEntry.action_type == AuditActionType.REASSIGN_ITEM
        ).one()
        assert reassigned.payload_json == {"person_id": ev.cleo_id, "previous_person_id": ev.ben_id}

    def test_assigning_current_assignee_again_is_a_noop(self, db_session, sm, planned_event):
        ev = planned_event
        first = sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)
        sm.respond_to_assignment(first.id, ev.ben_id, AssignmentResponse.ACCEPTED)

        again = sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)

        assert again.id == first.id
        assert again.response == AssignmentResponse.ACCEPTED
        assign_entries = db_session.query(AuditEntry).filter(
            AuditEntry.action_type.in_([AuditActionType.ASSIGN_ITEM, AuditActionType.REASSIGN_ITEM])
        ).count()
        assert assign_entries == 1

    def test_declined_item_stays_assigned_for_display(self, db_session, sm, planned_event):
        """
        INVARIANT: Item.status reflects row existence only; a DECLINED row still counts.
        """
        ev = planned_event
        assignment = sm.assign_item(ev.gravy_id, ev.cleo_id, ev.host_id)

        sm.respond_to_assignment(assignment.id, ev.cleo_id, AssignmentResponse.DECLINED)

        assert db_session.get(Item, ev.gravy_id).status == ItemStatus.ASSIGNED
        assert_consistent(db_session)

    def test_delete_item_removes_its_assignment(self, db_session, sm, planned_event):
        ev = planned_event
        sm.assign_item(ev.gravy_id, ev.cleo_id, ev.host_id)

        sm.delete_item(ev.gravy_id, ev.host_id)

        assert db_session.get(Item, ev.gravy_id) is None
        assert db_session.query(Assignment).count() == 0
        assert_consistent(db_session)

    def test_remove_person_releases_every_item(self, db_session, sm, planned_event):
        """
        INVARIANT: Removing a person unassigns each of their items and repairs each one.
        """
        ev = planned_event
        assign_everything(sm, ev)

        released = sm.remove_person(ev.event_id, ev.ben_id, ev.host_id)

        assert released == 2
        turkey = db_session.get(Item, ev.turkey_id)
        potatoes = db_session.get(Item, ev.potatoes_id)
        gravy = db_session.get(Item, ev.gravy_id)
        assert turkey.status == ItemStatus.UNASSIGNED
        assert potatoes.status == ItemStatus.UNASSIGNED
        assert gravy.status == ItemStatus.ASSIGNED
        assert turkey.previously_assigned_to == "Ben"
        assert potatoes.previously_assigned_to == "Ben"
        assert gravy.previously_assigned_to is None
        assert_consistent(db_session)


class TestAssignmentRules:
    """Test who can be assigned and when."""

    def test_assignee_must_be_in_the_items_team(self, db_session, sm, planned_event):
        ev = planned_event
        outsider = sm.add_person(ev.event_id, ev.host_id, "Dev")

        with pytest.raises(ValidationError):
            sm.assign_item(ev.turkey_id, outsider.person_id, ev.host_id)

        assert db_session.query(Assignment).count() == 0

    def test_assignee_must_be_part_of_the_event(self, db_session, sm, planned_event):
        ev = planned_event

        with pytest.raises(ValidationError):
            sm.assign_item(ev.turkey_id, 9999, ev.host_id)

    def test_unassigning_an_unassigned_item_is_refused(self, sm, planned_event):
        with pytest.raises(ValidationError):
            sm.unassign_item(planned_event.turkey_id, planned_event.host_id)

    def test_assignment_refused_while_frozen(self, db_session, sm, planned_event):
        ev = planned_event
        advance_to(sm, ev, EventStatus.FROZEN)

        with pytest.raises(MutationNotPermittedError):
            sm.assign_item(ev.turkey_id, ev.cleo_id, ev.host_id)

        turkey = db_session.get(Item, ev.turkey_id)
        assert turkey.assignment.person_id == ev.ben_id

    def test_critical_item_cannot_be_deleted_while_confirming(self, db_session, sm, planned_event):
        ev = planned_event
        advance_to(sm, ev, EventStatus.CONFIRMING)

        with pytest.raises(MutationNotPermittedError):
            sm.delete_item(ev.turkey_id, ev.host_id)
        sm.delete_item(ev.gravy_id, ev.host_id)

        assert db_session.get(Item, ev.turkey_id) is not None
        assert db_session.get(Item, ev.gravy_id) is None

    def test_unknown_item_is_not_found(self, sm, planned_event):
        with pytest.raises(NotFoundError):
            sm.assign_item(9999, planned_event.ben_id, planned_event.host_id)


class TestRepair:
    """Test the repair step itself."""

    def test_repair_fixes_a_drifted_status(self, db_session, planned_event):
        ev = planned_event
        db_session.query(Item).filter(Item.id == ev.gravy_id).update(
            {Item.status: ItemStatus.ASSIGNED}, synchronize_session=False
        )
        db_session.expire_all()

        assert repair_item_status(db_session, ev.gravy_id) == ItemStatus.UNASSIGNED
        db_session.commit()

        assert db_session.get(Item, ev.gravy_id).status == ItemStatus.UNASSIGNED

    def test_repair_of_missing_item_aborts_the_whole_transaction(self, db_session, planned_event):
        """
        INVARIANT: A failed repair rolls back the assignment mutation and its audit entry.
        """
        ev = planned_event
        entries_before = db_session.query(AuditEntry).count()

        with pytest.raises(ConsistencyRepairError):
            with unit_of_work(db_session):
                db_session.add(Assignment(item_id=ev.potatoes_id, person_id=ev.ben_id))
                db_session.add(
                    AuditEntry(
                        event_id=ev.event_id,
                        actor_id=ev.host_id,
                        action_type=AuditActionType.ASSIGN_ITEM,
                        target_type="Item",
                        target_id=str(ev.potatoes_id),
                    )
                )
                db_session.flush()
                repair_item_status(db_session, 9999)

        assert db_session.query(Assignment).count() == 0
        assert db_session.query(AuditEntry).count() == entries_before
        assert_consistent(db_session)


class TestTeamRollup:
    """Test the display-only team status."""

    def test_rollup_moves_from_critical_gap_to_sorted(self, db_session, sm, planned_event):
        ev = planned_event

        def team_status():
            db_session.expire_all()
            return compute_team_status(db_session.query(Item).filter(Item.team_id == ev.team_id))

        assert team_status() == TeamStatus.CRITICAL_GAP

        sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)
        assert team_status() == TeamStatus.GAP

        sm.assign_item(ev.potatoes_id, ev.ben_id, ev.host_id)
        gravy = sm.assign_item(ev.gravy_id, ev.cleo_id, ev.host_id)
        assert team_status() == TeamStatus.SORTED

        sm.respond_to_assignment(gravy.id, ev.cleo_id, AssignmentResponse.DECLINED)
        assert team_status() == TeamStatus.GAP
