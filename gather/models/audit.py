"""
Audit log model.

AuditEntry rows are append-only: the mapper hooks below refuse any UPDATE or
DELETE at flush time, so the only way to touch the table through the ORM is
to add new rows.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Text, event
from gather.database import Base
from gather.exceptions import ImmutableRecordError


class AuditEntry(Base):
    """
    Immutable record of one state-changing action.

    Invariants:
    - Once written, never edited or deleted
    - Written inside the same transaction as the mutation it describes
    """
    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("people.id"), nullable=False)
    action_type = Column(String, nullable=False, index=True)  # e.g. "STATUS_CHANGE"
    target_type = Column(String, nullable=False)  # e.g. "Event", "Item"
    target_id = Column(String, nullable=False, index=True)
    details = Column(Text, nullable=False, default="")
    payload_json = Column(JSON, nullable=True)  # Minimal structured context
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


@event.listens_for(AuditEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableRecordError(f"AuditEntry {target.id} is append-only and cannot be updated")


@event.listens_for(AuditEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableRecordError(f"AuditEntry {target.id} is append-only and cannot be deleted")


class AuditActionType:
    """Enumeration of audit action types."""
    # Event lifecycle
    CREATE_EVENT = "CREATE_EVENT"
    EDIT_EVENT = "EDIT_EVENT"
    STATUS_CHANGE = "STATUS_CHANGE"
    OVERRIDE_UNFREEZE = "OVERRIDE_UNFREEZE"

    # Structure
    CREATE_TEAM = "CREATE_TEAM"
    CREATE_ITEM = "CREATE_ITEM"
    EDIT_ITEM = "EDIT_ITEM"
    DELETE_ITEM = "DELETE_ITEM"

    # Assignments
    ASSIGN_ITEM = "ASSIGN_ITEM"
    REASSIGN_ITEM = "REASSIGN_ITEM"
    UNASSIGN_ITEM = "UNASSIGN_ITEM"
    RESPOND_ASSIGNMENT = "RESPOND_ASSIGNMENT"

    # People
    ADD_PERSON = "ADD_PERSON"
    REMOVE_PERSON = "REMOVE_PERSON"

    # Conflicts
    DISMISS_CONFLICT = "DISMISS_CONFLICT"
    RESOLVE_CONFLICT = "RESOLVE_CONFLICT"
    DELEGATE_CONFLICT = "DELEGATE_CONFLICT"
    ACKNOWLEDGE_CONFLICT = "ACKNOWLEDGE_CONFLICT"
