"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gather.models.enums import (
    AcknowledgementStatus,
    AlternativesConsidered,
    AssignmentResponse,
    ConflictSeverity,
    ConflictStatus,
    CoordinatorVisibility,
    EventStatus,
    ItemStatus,
    MitigationPlanType,
    PersonRole,
    StructureMode,
    TeamStatus,
)


# Event schemas
class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    host_name: str = Field(..., min_length=1)
    host_email: Optional[str] = None
    guest_count: Optional[int] = Field(None, ge=0)
    dietary_vegetarian: int = Field(0, ge=0)
    dietary_vegan: int = Field(0, ge=0)
    dietary_gluten_free: int = Field(0, ge=0)
    dietary_dairy_free: int = Field(0, ge=0)
    venue: Optional[dict] = None


class EventUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    guest_count: Optional[int] = Field(None, ge=0)
    dietary_vegetarian: Optional[int] = Field(None, ge=0)
    dietary_vegan: Optional[int] = Field(None, ge=0)
    dietary_gluten_free: Optional[int] = Field(None, ge=0)
    dietary_dairy_free: Optional[int] = Field(None, ge=0)
    venue: Optional[dict] = None


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: EventStatus
    structure_mode: StructureMode
    guest_count: Optional[int]
    dietary_vegetarian: int
    dietary_vegan: int
    dietary_gluten_free: int
    dietary_dairy_free: int
    venue: Optional[dict]
    version: int
    created_at: datetime
    updated_at: datetime


class EventCreated(BaseModel):
    event: EventResponse
    host_person_id: int


class StatusTransitionRequest(BaseModel):
    status: EventStatus
    reason: Optional[str] = None


class FreezeCheckResponse(BaseModel):
    can_freeze: bool
    gap_count: int
    unassigned_count: int
    declined_count: int
    critical_gap_count: int
    total_items: int


# Team / item schemas
class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1)
    scope: Optional[str] = None
    coordinator_id: Optional[int] = None


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1)
    critical: bool = False
    quantity: Optional[str] = None
    serve_time: Optional[str] = None
    notes: Optional[str] = None


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    critical: Optional[bool] = None
    quantity: Optional[str] = None
    serve_time: Optional[str] = None
    notes: Optional[str] = None


class AssignmentRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    person_id: int
    response: AssignmentResponse
    created_at: datetime
    responded_at: Optional[datetime]


class ItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    team_id: int
    name: str
    quantity: Optional[str]
    critical: bool
    serve_time: Optional[str]
    notes: Optional[str]
    previously_assigned_to: Optional[str]
    status: ItemStatus
    assignment: Optional[AssignmentRecordResponse] = None


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    name: str
    scope: Optional[str]
    coordinator_id: Optional[int]
    items: List[ItemResponse] = []


class TeamSummary(TeamResponse):
    status: TeamStatus


class AssignRequest(BaseModel):
    person_id: int


class RespondRequest(BaseModel):
    response: AssignmentResponse


# People
class PersonAdd(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: PersonRole = PersonRole.PARTICIPANT
    team_id: Optional[int] = None
    person_id: Optional[int] = None


class MembershipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    person_id: int
    event_id: int
    team_id: Optional[int]
    role: PersonRole


class RemovePersonResponse(BaseModel):
    person_id: int
    items_released: int


# Audit
class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    actor_id: int
    action_type: str
    target_type: str
    target_id: str
    details: str
    payload_json: Optional[Any]
    created_at: datetime


# Conflicts
class ConflictResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    type: str
    severity: ConflictSeverity
    status: ConflictStatus
    title: str
    description: Optional[str]
    affected_parties: Optional[list]
    inputs_referenced: Optional[list]
    can_delegate: bool
    delegated_to: Optional[str]
    dismissed_at: Optional[datetime]
    resolved_at: Optional[datetime]
    created_at: datetime


class AcknowledgementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conflict_id: int
    acknowledged_by: int
    acknowledged_at: datetime
    impact_statement: str
    impact_understood: bool
    mitigation_plan_type: MitigationPlanType
    alternatives_considered: AlternativesConsidered
    visibility_cohosts: bool
    visibility_coordinators: CoordinatorVisibility
    visibility_participants: bool
    supersedes_acknowledgement_id: Optional[int]
    status: AcknowledgementStatus


class ConflictResetResponse(BaseModel):
    conflict_id: int
    reason: str


# Error response
class RefusalResponse(BaseModel):
    """Response when an action is refused."""
    message: str
