"""Domain models - events, teams, items, assignments, people, conflicts and acknowledgements."""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from gather.database import Base
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
)


class Event(Base):
    """
    A group event progressing DRAFT → CONFIRMING → FROZEN → COMPLETE.

    Invariants enforced here:
    - status is always one of the four lifecycle stages
    - version is bumped by every ORM update, so two writers working from the
      same snapshot cannot both commit
    """
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    status = Column(SQLEnum(EventStatus), nullable=False, default=EventStatus.DRAFT)
    structure_mode = Column(SQLEnum(StructureMode), nullable=False, default=StructureMode.EDITABLE)

    # Conflict inputs
    guest_count = Column(Integer, nullable=True)
    dietary_vegetarian = Column(Integer, nullable=False, default=0)
    dietary_vegan = Column(Integer, nullable=False, default=0)
    dietary_gluten_free = Column(Integer, nullable=False, default=0)
    dietary_dairy_free = Column(Integer, nullable=False, default=0)
    venue = Column(JSON, nullable=True)  # e.g. {"name": "Hall", "ovenCount": 2}

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    teams = relationship("Team", back_populates="event", cascade="all, delete-orphan")
    memberships = relationship("PersonEvent", back_populates="event", cascade="all, delete-orphan")
    conflicts = relationship("Conflict", back_populates="event", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    @property
    def structure_locked(self) -> bool:
        return self.structure_mode == StructureMode.LOCKED


class Person(Base):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    memberships = relationship("PersonEvent", back_populates="person")
    assignments = relationship("Assignment", back_populates="person")


class Team(Base):
    """A team belongs to exactly one Event and owns its Items."""
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    scope = Column(String, nullable=True)
    coordinator_id = Column(Integer, ForeignKey("people.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    event = relationship("Event", back_populates="teams")
    coordinator = relationship("Person")
    items = relationship("Item", back_populates="team", cascade="all, delete-orphan")


class PersonEvent(Base):
    """A Person's role (and optional team) within one Event."""
    __tablename__ = "person_events"
    __table_args__ = (UniqueConstraint("person_id", "event_id", name="uq_person_event"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    person_id = Column(Integer, ForeignKey("people.id"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    role = Column(SQLEnum(PersonRole), nullable=False, default=PersonRole.PARTICIPANT)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    person = relationship("Person", back_populates="memberships")
    event = relationship("Event", back_populates="memberships")
    team = relationship("Team")


class Item(Base):
    """
    Something a team has to bring or do.

    Invariants:
    - status == ASSIGNED iff an Assignment row exists (maintained by repair,
      never by hand)
    - at most one Assignment per item
    """
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    quantity = Column(String, nullable=True)
    critical = Column(Boolean, nullable=False, default=False)
    serve_time = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    previously_assigned_to = Column(String, nullable=True)  # Human-readable, comma separated
    status = Column(SQLEnum(ItemStatus), nullable=False, default=ItemStatus.UNASSIGNED)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    team = relationship("Team", back_populates="items")
    assignment = relationship(
        "Assignment",
        back_populates="item",
        uselist=False,
        cascade="all, delete-orphan",
    )


class Assignment(Base):
    """A Person's commitment to one Item. DECLINED rows are kept, not deleted."""
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, unique=True)
    person_id = Column(Integer, ForeignKey("people.id"), nullable=False, index=True)
    response = Column(SQLEnum(AssignmentResponse), nullable=False, default=AssignmentResponse.PENDING)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    responded_at = Column(DateTime, nullable=True)

    item = relationship("Item", back_populates="assignment")
    person = relationship("Person", back_populates="assignments")


class Conflict(Base):
    """
    A detected gap or risk in the plan, written by an external detector.

    inputs_referenced is an ordered list of
    {entity_type, entity_id, field_path, value_at_detection} snapshots taken
    when the finding was produced or last reset.
    """
    __tablename__ = "conflicts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    severity = Column(SQLEnum(ConflictSeverity), nullable=False)
    status = Column(SQLEnum(ConflictStatus), nullable=False, default=ConflictStatus.OPEN, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    affected_parties = Column(JSON, nullable=True)
    inputs_referenced = Column(JSON, nullable=True)

    can_delegate = Column(Boolean, nullable=False, default=False)
    delegated_to = Column(String, nullable=True)
    delegated_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(Integer, ForeignKey("people.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    event = relationship("Event", back_populates="conflicts")
    acknowledgements = relationship(
        "Acknowledgement",
        back_populates="conflict",
        cascade="all, delete-orphan",
        order_by="Acknowledgement.id",
    )


class Acknowledgement(Base):
    """
    A host's formal acceptance of a critical conflict's risk.

    Invariants:
    - at most one ACTIVE row per conflict
    - replaced rows are marked SUPERSEDED, never deleted; the replacing row
      points back at them through supersedes_acknowledgement_id
    """
    __tablename__ = "acknowledgements"
    __table_args__ = (
        Index(
            "uq_acknowledgements_active_per_conflict",
            "conflict_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    conflict_id = Column(Integer, ForeignKey("conflicts.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    acknowledged_by = Column(Integer, ForeignKey("people.id"), nullable=False)
    acknowledged_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    impact_statement = Column(Text, nullable=False)
    impact_understood = Column(Boolean, nullable=False)
    mitigation_plan_type = Column(SQLEnum(MitigationPlanType), nullable=False)
    affected_parties = Column(JSON, nullable=True)
    alternatives_considered = Column(
        SQLEnum(AlternativesConsidered), nullable=False, default=AlternativesConsidered.NONE
    )

    visibility_cohosts = Column(Boolean, nullable=False, default=True)
    visibility_coordinators = Column(
        SQLEnum(CoordinatorVisibility), nullable=False, default=CoordinatorVisibility.RELEVANT_ONLY
    )
    visibility_participants = Column(Boolean, nullable=False, default=False)

    supersedes_acknowledgement_id = Column(Integer, ForeignKey("acknowledgements.id"), nullable=True)
    status = Column(SQLEnum(AcknowledgementStatus), nullable=False, default=AcknowledgementStatus.ACTIVE)

    conflict = relationship("Conflict", back_populates="acknowledgements")
    supersedes = relationship("Acknowledgement", remote_side=[id])
