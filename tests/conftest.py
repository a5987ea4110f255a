"""Pytest configuration and shared fixtures."""
import os

# Keep the module-level engine off disk before any gather module is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gather.database import Base
from gather.models import audit, domain  # noqa: F401
from gather.models.domain import Conflict, PersonEvent
from gather.models.enums import ConflictSeverity, ConflictStatus, EventStatus, PersonRole
from gather.services.state_machine import StateMachine


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # StaticPool keeps one connection so the API tests can share it across threads
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def sm(db_session):
    return StateMachine(db_session)


def host_id_for(db_session, event_id):
    membership = db_session.query(PersonEvent).filter(
        PersonEvent.event_id == event_id,
        PersonEvent.role == PersonRole.HOST,
    ).one()
    return membership.person_id


@pytest.fixture
def planned_event(db_session, sm):
    """
    A DRAFT event with one team ("Mains"), two members and three items.

    Turkey is critical; nothing is assigned yet.
    """
    event = sm.create_event(
        "Christmas Lunch",
        host_name="Ada",
        guest_count=20,
        dietary_vegetarian=3,
        venue={"name": "Ada's house", "ovenCount": 1},
    )
    host_id = host_id_for(db_session, event.id)
    team = sm.create_team(event.id, host_id, "Mains")
    ben = sm.add_person(event.id, host_id, "Ben", team_id=team.id)
    cleo = sm.add_person(event.id, host_id, "Cleo", team_id=team.id)
    turkey = sm.create_item(team.id, host_id, "Turkey", critical=True, serve_time="13:00")
    potatoes = sm.create_item(team.id, host_id, "Roast potatoes")
    gravy = sm.create_item(team.id, host_id, "Gravy")

    return SimpleNamespace(
        event_id=event.id,
        host_id=host_id,
        team_id=team.id,
        ben_id=ben.person_id,
        cleo_id=cleo.person_id,
        turkey_id=turkey.id,
        potatoes_id=potatoes.id,
        gravy_id=gravy.id,
    )


def assign_everything(sm, ev):
    """Turkey and potatoes to Ben, gravy to Cleo."""
    sm.assign_item(ev.turkey_id, ev.ben_id, ev.host_id)
    sm.assign_item(ev.potatoes_id, ev.ben_id, ev.host_id)
    sm.assign_item(ev.gravy_id, ev.cleo_id, ev.host_id)


def advance_to(sm, ev, stage):
    """Walk the event forward through the lifecycle up to `stage`."""
    path = [EventStatus.CONFIRMING, EventStatus.FROZEN, EventStatus.COMPLETE]
    for step in path[: path.index(stage) + 1]:
        if step == EventStatus.FROZEN:
            assign_everything(sm, ev)
        sm.transition_status(ev.event_id, step, ev.host_id)


def make_conflict(
    db_session,
    event_id,
    inputs=None,
    severity=ConflictSeverity.SIGNIFICANT,
    status=ConflictStatus.DISMISSED,
    **fields,
):
    """Write a conflict the way the external detector would."""
    conflict = Conflict(
        event_id=event_id,
        type=fields.pop("type", "dietary_gap"),
        title=fields.pop("title", "Not enough vegetarian mains"),
        severity=severity,
        status=status,
        inputs_referenced=inputs,
        dismissed_at=datetime.utcnow() if status == ConflictStatus.DISMISSED else None,
        **fields,
    )
    db_session.add(conflict)
    db_session.commit()
    return conflict
