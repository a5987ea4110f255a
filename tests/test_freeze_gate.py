"""
Tests for the freeze readiness gate.

The gate reads the Assignment table, never Item.status.
"""
import pytest

from gather.exceptions import FreezeNotReadyError
from gather.models.audit import AuditActionType, AuditEntry
from gather.models.domain import Event, Item
from gather.models.enums import AssignmentResponse, EventStatus, ItemStatus
from gather.services.freeze_gate import can_freeze, check_freeze_readiness

from conftest import assign_everything, host_id_for


class TestFreezeReadiness:
    """Test the gap counts behind can_freeze."""

    def test_unassigned_items_are_gaps(self, db_session, planned_event):
        readiness = check_freeze_readiness(db_session, planned_event.event_id)

        assert readiness.total_items == 3
        assert readiness.unassigned_count == 3
        assert readiness.declined_count == 0
        assert readiness.critical_gap_count == 1
        assert readiness.gap_count == 3
        assert readiness.can_freeze is False

    def test_fully_assigned_event_can_freeze(self, db_session, sm, planned_event):
        assign_everything(sm, planned_event)

        readiness = check_freeze_readiness(db_session, planned_event.event_id)

        assert readiness.gap_count == 0
        assert readiness.can_freeze is True
        assert can_freeze(db_session, planned_event.event_id) is True

    def test_pending_and_accepted_both_count_as_covered(self, db_session, sm, planned_event):
        ev = planned_event
        assign_everything(sm, ev)
        turkey = db_session.get(Item, ev.turkey_id)
        sm.respond_to_assignment(turkey.assignment.id, ev.ben_id, AssignmentResponse.ACCEPTED)

        assert can_freeze(db_session, ev.event_id) is True

    def test_declined_assignment_is_a_gap(self, db_session, sm, planned_event):
        """
        INVARIANT: A DECLINED assignment does not cover its item for freezing.
        """
        ev = planned_event
        assign_everything(sm, ev)
        turkey = db_session.get(Item, ev.turkey_id)

        sm.respond_to_assignment(turkey.assignment.id, ev.ben_id, AssignmentResponse.DECLINED)

        readiness = check_freeze_readiness(db_session, ev.event_id)
        assert readiness.unassigned_count == 0
        assert readiness.declined_count == 1
        assert readiness.critical_gap_count == 1
        assert readiness.can_freeze is False

    def test_stale_item_status_cannot_fake_readiness(self, db_session, planned_event):
        """
        INVARIANT: Marking items ASSIGNED by hand does not make the event freezable.
        """
        db_session.query(Item).update({Item.status: ItemStatus.ASSIGNED}, synchronize_session=False)
        db_session.commit()

        assert can_freeze(db_session, planned_event.event_id) is False

    def test_items_of_other_events_are_not_counted(self, db_session, sm, planned_event):
        assign_everything(sm, planned_event)
        other = sm.create_event("Boxing Day", host_name="Zed")
        other_host = host_id_for(db_session, other.id)
        other_team = sm.create_team(other.id, other_host, "Drinks")
        sm.create_item(other_team.id, other_host, "Mulled wine")

        assert can_freeze(db_session, planned_event.event_id) is True
        assert check_freeze_readiness(db_session, other.id).gap_count == 1

    def test_event_without_items_can_freeze(self, db_session, sm):
        event = sm.create_event("Picnic", host_name="Ada")

        readiness = check_freeze_readiness(db_session, event.id)

        assert readiness.total_items == 0
        assert readiness.can_freeze is True


class TestFreezeTransition:
    """Test that CONFIRMING → FROZEN runs the gate."""

    def test_freeze_refused_with_gap_count(self, db_session, sm, planned_event):
        ev = planned_event
        sm.transition_status(ev.event_id, EventStatus.CONFIRMING, ev.host_id)
        sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)

        with pytest.raises(FreezeNotReadyError) as exc_info:
            sm.transition_status(ev.event_id, EventStatus.FROZEN, ev.host_id)

        assert exc_info.value.gap_count == 2
        assert "2 item(s)" in exc_info.value.message
        assert db_session.get(Event, ev.event_id).status == EventStatus.CONFIRMING

    def test_refused_freeze_writes_no_audit(self, db_session, sm, planned_event):
        ev = planned_event
        sm.transition_status(ev.event_id, EventStatus.CONFIRMING, ev.host_id)

        with pytest.raises(FreezeNotReadyError):
            sm.transition_status(ev.event_id, EventStatus.FROZEN, ev.host_id)

        changes = db_session.query(AuditEntry).filter(
            AuditEntry.action_type == AuditActionType.STATUS_CHANGE
        ).all()
        assert [c.payload_json["to"] for c in changes] == ["CONFIRMING"]

    def test_declined_item_blocks_freeze(self, db_session, sm, planned_event):
        ev = planned_event
        sm.transition_status(ev.event_id, EventStatus.CONFIRMING, ev.host_id)
        assign_everything(sm, ev)
        gravy = db_session.get(Item, ev.gravy_id)
        sm.respond_to_assignment(gravy.assignment.id, ev.cleo_id, AssignmentResponse.DECLINED)

        with pytest.raises(FreezeNotReadyError) as exc_info:
            sm.transition_status(ev.event_id, EventStatus.FROZEN, ev.host_id)

        assert exc_info.value.gap_count == 1

    def test_freeze_succeeds_once_every_item_is_covered(self, db_session, sm, planned_event):
        ev = planned_event
        sm.transition_status(ev.event_id, EventStatus.CONFIRMING, ev.host_id)
        assign_everything(sm, ev)

        event = sm.transition_status(ev.event_id, EventStatus.FROZEN, ev.host_id)

        assert event.status == EventStatus.FROZEN
