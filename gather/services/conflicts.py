"""
Conflict status handling and dismissal reset.

A dismissal is a cached judgement that a finding no longer matters. Each
conflict carries the exact inputs it was computed from; when any of them
drifts, the dismissal is invalidated and the conflict reopens. Nothing here
knows how findings are produced.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SnapshotValidationError
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from gather.database import unit_of_work
from gather.exceptions import NotFoundError, ValidationError
from gather.models.audit import AuditActionType
from gather.models.domain import Conflict, Event, Item, Team
from gather.models.enums import ConflictStatus
from gather.services.audit_log import AuditLog

logger = logging.getLogger(__name__)


class InputReference(BaseModel):
    """One (entity kind, id, dotted field path, value at detection) snapshot."""

    model_config = ConfigDict(frozen=True)

    entity_type: str = Field(..., validation_alias=AliasChoices("entity_type", "type"))
    entity_id: Optional[Any] = Field(None, validation_alias=AliasChoices("entity_id", "id"))
    field_path: str = Field(..., min_length=1, validation_alias=AliasChoices("field_path", "field"))
    value_at_detection: Any = Field(
        None, validation_alias=AliasChoices("value_at_detection", "valueAtDetection")
    )

    @field_validator("entity_type")
    @classmethod
    def normalize_entity_type(cls, v: str) -> str:
        return v.strip().lower()


def parse_references(raw: Optional[List[dict]]) -> List[InputReference]:
    if not raw or not isinstance(raw, list):
        return []
    return [InputReference.model_validate(entry) for entry in raw]


# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------

RecordLoader = Callable[[Session, Conflict, InputReference], Any]

_LOADERS: Dict[str, RecordLoader] = {}


def register_loader(entity_type: str):
    """Register how live records of one entity kind are fetched."""
    def decorator(fn: RecordLoader) -> RecordLoader:
        _LOADERS[entity_type.lower()] = fn
        return fn
    return decorator


@register_loader("event")
def _load_event(db: Session, conflict: Conflict, ref: InputReference):
    # Event references always mean the conflict's own event
    return db.get(Event, conflict.event_id, populate_existing=True)


@register_loader("item")
def _load_item(db: Session, conflict: Conflict, ref: InputReference):
    if ref.entity_id is None:
        return None
    return db.get(Item, ref.entity_id, populate_existing=True)


@register_loader("team")
def _load_team(db: Session, conflict: Conflict, ref: InputReference):
    if ref.entity_id is None:
        return None
    return db.get(Team, ref.entity_id, populate_existing=True)


class _Unresolvable:
    def __repr__(self) -> str:
        return "<unresolvable>"


UNRESOLVABLE = _Unresolvable()

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _read_attribute(obj: Any, name: str) -> Any:
    state = sa_inspect(obj, raiseerr=False)
    if state is None:
        return getattr(obj, name, None)

    # Only mapped columns are valid inputs; camelCase paths map to snake_case columns
    columns = {attr.key for attr in state.mapper.column_attrs}
    for candidate in (name, _snake_case(name)):
        if candidate in columns:
            return getattr(obj, candidate)
    return None


def resolve_field_path(record: Any, field_path: str) -> Any:
    """Walk a dotted path such as 'venue.ovenCount'. Missing segments yield None."""
    current = record
    for part in field_path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = _read_attribute(current, part)
    return current


def normalize_value(value: Any) -> Any:
    """Bring a live value into the same shape a JSON snapshot has."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def read_current_value(db: Session, conflict: Conflict, ref: InputReference) -> Any:
    loader = _LOADERS.get(ref.entity_type)
    if loader is None:
        logger.warning(
            "No loader for entity type %r on conflict %s; input ignored",
            ref.entity_type,
            conflict.id,
        )
        return UNRESOLVABLE

    record = loader(db, conflict, ref)
    if record is None:
        return None
    return normalize_value(resolve_field_path(record, ref.field_path))


def values_equal(a: Any, b: Any) -> bool:
    """Strict equality: True is not 1 and False is not 0."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def format_change_reason(ref: InputReference, old_value: Any, new_value: Any) -> str:
    leaf = _snake_case(ref.field_path.split(".")[-1])
    if leaf.startswith("dietary_"):
        label = leaf[len("dietary_"):].replace("_", " ").capitalize() + " count"
    else:
        label = leaf.replace("_", " ").capitalize()
    return f"{label} changed ({old_value} → {new_value})"


# ---------------------------------------------------------------------------
# Dismissal reset
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConflictReset:
    """A dismissed conflict that was reopened, and why."""
    conflict_id: int
    reason: str


def detect_drift(db: Session, conflict: Conflict) -> Optional[ConflictReset]:
    """
    Compare every recorded input with its live value.

    Returns None when nothing moved, or when the conflict recorded no inputs
    at all (such dismissals are permanent). A conflict whose recorded inputs
    are malformed is skipped with a warning and stays dismissed.
    """
    try:
        references = parse_references(conflict.inputs_referenced)
    except SnapshotValidationError as exc:
        logger.warning(
            "Conflict %s has malformed inputs_referenced; skipped (%d error(s))",
            conflict.id,
            exc.error_count(),
            extra={"gather_event_id": conflict.event_id, "gather_conflict_id": conflict.id},
        )
        return None

    for ref in references:
        current = read_current_value(db, conflict, ref)
        if current is UNRESOLVABLE:
            continue
        if not values_equal(current, ref.value_at_detection):
            return ConflictReset(
                conflict_id=conflict.id,
                reason=format_change_reason(ref, ref.value_at_detection, current),
            )
    return None


def _resnapshot(db: Session, conflict: Conflict) -> List[dict]:
    snapshot = []
    for ref in parse_references(conflict.inputs_referenced):
        current = read_current_value(db, conflict, ref)
        value = ref.value_at_detection if current is UNRESOLVABLE else current
        snapshot.append(ref.model_copy(update={"value_at_detection": value}).model_dump())
    return snapshot


def reset_dismissed_conflicts(db: Session, event_id: int) -> List[ConflictReset]:
    """
    Reopen every DISMISSED conflict of the event whose inputs have drifted.

    Reopened conflicts go back to OPEN with dismissed_at cleared and their
    inputs re-snapshotted to the current values. All flips commit together.
    """
    resets: List[ConflictReset] = []

    with unit_of_work(db):
        dismissed = (
            db.query(Conflict)
            .filter(Conflict.event_id == event_id, Conflict.status == ConflictStatus.DISMISSED)
            .order_by(Conflict.id)
            .all()
        )

        for conflict in dismissed:
            reset = detect_drift(db, conflict)
            if reset is None:
                continue

            conflict.status = ConflictStatus.OPEN
            conflict.dismissed_at = None
            conflict.inputs_referenced = _resnapshot(db, conflict)
            resets.append(reset)

    for reset in resets:
        logger.info(
            "Reopened conflict %s: %s",
            reset.conflict_id,
            reset.reason,
            extra={"gather_event_id": event_id, "gather_conflict_id": reset.conflict_id},
        )

    return resets


# ---------------------------------------------------------------------------
# Status operations
# ---------------------------------------------------------------------------

def get_conflict(db: Session, event_id: int, conflict_id: int) -> Conflict:
    """Load a conflict scoped to its event. Other events' conflicts are not found."""
    conflict = db.query(Conflict).filter(Conflict.id == conflict_id).first()
    if conflict is None or conflict.event_id != event_id:
        raise NotFoundError("Conflict", conflict_id)
    return conflict


def list_conflicts(
    db: Session,
    event_id: int,
    status: Optional[ConflictStatus] = None,
) -> List[Conflict]:
    query = db.query(Conflict).filter(Conflict.event_id == event_id)
    if status is not None:
        query = query.filter(Conflict.status == status)
    return query.order_by(Conflict.id).all()


def dismiss_conflict(db: Session, event_id: int, conflict_id: int, actor_id: int) -> Conflict:
    """Mark a conflict DISMISSED. Its recorded inputs stay as they were at detection."""
    with unit_of_work(db):
        conflict = get_conflict(db, event_id, conflict_id)
        conflict.status = ConflictStatus.DISMISSED
        conflict.dismissed_at = datetime.utcnow()

        AuditLog(db).append(
            event_id=event_id,
            actor_id=actor_id,
            action_type=AuditActionType.DISMISS_CONFLICT,
            target_type="Conflict",
            target_id=conflict.id,
            details=f"Dismissed conflict: {conflict.title}",
        )
    return conflict


def resolve_conflict(db: Session, event_id: int, conflict_id: int, actor_id: int) -> Conflict:
    with unit_of_work(db):
        conflict = get_conflict(db, event_id, conflict_id)
        conflict.status = ConflictStatus.RESOLVED
        conflict.resolved_by = actor_id
        conflict.resolved_at = datetime.utcnow()

        AuditLog(db).append(
            event_id=event_id,
            actor_id=actor_id,
            action_type=AuditActionType.RESOLVE_CONFLICT,
            target_type="Conflict",
            target_id=conflict.id,
            details=f"Resolved conflict: {conflict.title}",
        )
    return conflict


def delegate_conflict(db: Session, event_id: int, conflict_id: int, actor_id: int) -> Conflict:
    """Hand a conflict to the coordinators. Only conflicts flagged can_delegate qualify."""
    with unit_of_work(db):
        conflict = get_conflict(db, event_id, conflict_id)
        if not conflict.can_delegate:
            raise ValidationError("This conflict cannot be delegated")

        conflict.status = ConflictStatus.DELEGATED
        conflict.delegated_to = "COORDINATOR"
        conflict.delegated_at = datetime.utcnow()

        AuditLog(db).append(
            event_id=event_id,
            actor_id=actor_id,
            action_type=AuditActionType.DELEGATE_CONFLICT,
            target_type="Conflict",
            target_id=conflict.id,
            details=f"Delegated conflict to coordinators: {conflict.title}",
        )
    return conflict
