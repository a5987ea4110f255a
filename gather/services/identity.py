"""
Identity and scope resolution.

The engine never authenticates anyone. Whatever sits in front of it (magic
links, sessions, per-link tokens) hands over a person id; a ScopeResolver
turns that into the caller's role in one event and the engine trusts it.
"""
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from gather.models.domain import PersonEvent
from gather.models.enums import PersonRole


@dataclass(frozen=True)
class ActorScope:
    person_id: int
    event_id: int
    role: PersonRole
    team_id: Optional[int] = None


class ScopeResolver(Protocol):
    def resolve(self, event_id: int, person_id: int) -> Optional[ActorScope]:
        ...


class MembershipScopeResolver:
    """Resolves scope from the PersonEvent membership row."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, event_id: int, person_id: int) -> Optional[ActorScope]:
        membership = self.db.query(PersonEvent).filter(
            PersonEvent.event_id == event_id,
            PersonEvent.person_id == person_id,
        ).first()
        if membership is None:
            return None
        return ActorScope(
            person_id=membership.person_id,
            event_id=membership.event_id,
            role=membership.role,
            team_id=membership.team_id,
        )
