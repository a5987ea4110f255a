"""Enums for the Gather engine - these define the valid values for states and categories."""
from enum import Enum


class EventStatus(str, Enum):
    """The four lifecycle stages of an Event. No other stages exist."""
    DRAFT = "DRAFT"
    CONFIRMING = "CONFIRMING"
    FROZEN = "FROZEN"
    COMPLETE = "COMPLETE"


class StructureMode(str, Enum):
    """Structural lock on teams. Locked once the event leaves DRAFT."""
    EDITABLE = "EDITABLE"
    LOCKED = "LOCKED"


class ItemStatus(str, Enum):
    """Denormalized display status. Must equal 'has an Assignment row'."""
    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"


class AssignmentResponse(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


class PersonRole(str, Enum):
    HOST = "HOST"
    COORDINATOR = "COORDINATOR"
    PARTICIPANT = "PARTICIPANT"


class TeamStatus(str, Enum):
    """Display-only team rollup."""
    SORTED = "SORTED"
    GAP = "GAP"
    CRITICAL_GAP = "CRITICAL_GAP"


class MutationAction(str, Enum):
    """Actions checked by the mutation gate."""
    CREATE_ITEM = "createItem"
    EDIT_ITEM = "editItem"
    DELETE_ITEM = "deleteItem"
    ASSIGN_ITEM = "assignItem"
    ADD_PERSON = "addPerson"
    REMOVE_PERSON = "removePerson"


class ConflictSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    SIGNIFICANT = "SIGNIFICANT"
    ADVISORY = "ADVISORY"


class ConflictStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"
    DELEGATED = "DELEGATED"


class AcknowledgementStatus(str, Enum):
    """Only one ACTIVE acknowledgement per conflict; older ones are SUPERSEDED."""
    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"


class MitigationPlanType(str, Enum):
    SUBSTITUTE = "SUBSTITUTE"
    REASSIGN = "REASSIGN"
    COMMUNICATE = "COMMUNICATE"
    ACCEPT_GAP = "ACCEPT_GAP"
    EXTERNAL_CATERING = "EXTERNAL_CATERING"
    BRING_OWN = "BRING_OWN"
    OTHER = "OTHER"


class AlternativesConsidered(str, Enum):
    NONE = "NONE"
    REVIEWED = "REVIEWED"
    ATTEMPTED = "ATTEMPTED"


class CoordinatorVisibility(str, Enum):
    """Which coordinators may see an acknowledgement."""
    RELEVANT_ONLY = "relevant_only"
    ALL = "all"
    NONE = "none"
