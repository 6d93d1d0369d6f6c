"""Stored entity shapes returned by the store and the service layer."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class MatchStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class OpaqueBlob:
    """Serialized JSON object/array attached to a match or event.

    The core never looks inside; it only guarantees the value was
    object- or array-shaped when it came in.
    """

    text: str

    @classmethod
    def from_value(cls, value: Any) -> OpaqueBlob:
        if not isinstance(value, (dict, list)):
            raise TypeError(f"expected object or array, got {type(value).__name__}")
        return cls(json.dumps(value, separators=(",", ":"), allow_nan=False))

    def load(self) -> Any:
        return json.loads(self.text)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    skill_rating: int | None = None
    position_pref: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "skillRating": self.skill_rating,
            "positionPref": self.position_pref,
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class Team:
    """A team always carries the match it belongs to."""

    id: str
    match_id: str
    name: str
    color: str | None = None
    is_home: bool | None = None
    players: tuple[Player, ...] = ()
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.match_id:
            raise ValueError("Team requires a match identity")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "matchId": self.match_id,
            "name": self.name,
            "color": self.color,
            "isHome": self.is_home,
            "players": [p.to_dict() for p in self.players],
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class Event:
    id: str
    match_id: str
    type: str
    team_id: str | None = None
    player_id: str | None = None
    occurred_at: datetime | None = None
    match_minute: int | None = None
    payload: OpaqueBlob | None = None
    created_by: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "matchId": self.match_id,
            "type": self.type,
            "teamId": self.team_id,
            "playerId": self.player_id,
            "occurredAt": _iso(self.occurred_at),
            "matchMinute": self.match_minute,
            "payload": self.payload.load() if self.payload is not None else None,
            "createdBy": self.created_by,
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class Match:
    id: str
    name: str
    status: MatchStatus = MatchStatus.SCHEDULED
    start_time: datetime | None = None
    location: str | None = None
    tournament: str | None = None
    notes: str | None = None
    config: OpaqueBlob | None = None
    teams: tuple[Team, ...] = ()
    events: tuple[Event, ...] = ()
    created_at: datetime | None = None

    @property
    def team_ids(self) -> set[str]:
        return {t.id for t in self.teams}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "startTime": _iso(self.start_time),
            "location": self.location,
            "tournament": self.tournament,
            "notes": self.notes,
            "config": self.config.load() if self.config is not None else None,
            "teams": [t.to_dict() for t in self.teams],
            "events": [e.to_dict() for e in self.events],
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class TimelineEntry:
    """An event plus compact summaries of its team and player."""

    event: Event
    team: dict[str, Any] | None = None
    player: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d = self.event.to_dict()
        d["team"] = self.team
        d["player"] = self.player
        return d


@dataclass
class ImportResult:
    imported: int
    players: list[Player] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "players": [p.to_dict() for p in self.players],
        }
