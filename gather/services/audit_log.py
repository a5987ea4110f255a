"""Write-only access to the audit log."""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gather.models.audit import AuditEntry


class AuditLog:
    """
    Appends AuditEntry rows inside the caller's unit of work.

    There is no update or delete method. Entries become durable
    only when the surrounding unit of work commits, together with the
    mutation they describe.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        event_id: int,
        actor_id: int,
        action_type: str,
        target_type: str,
        target_id: Any,
        details: str = "",
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            event_id=event_id,
            actor_id=actor_id,
            action_type=action_type,
            target_type=target_type,
            target_id=str(target_id),
            details=details,
            payload_json=payload,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def entries_for_event(
        self,
        event_id: int,
        action_type: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Entries for one event, oldest first."""
        query = self.db.query(AuditEntry).filter(AuditEntry.event_id == event_id)
        if action_type is not None:
            query = query.filter(AuditEntry.action_type == action_type)
        return query.order_by(AuditEntry.created_at, AuditEntry.id).all()
