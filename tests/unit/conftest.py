"""Unit test fixtures.

InMemoryStore is a dict-backed MatchStore.  run_atomic snapshots the whole
state and restores it when the steps raise, so tests can assert that a
rejected operation left nothing behind.
"""

from __future__ import annotations

import copy
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from match_etl.models import Event, Match, MatchStatus, Player, Team, TimelineEntry
from match_etl.shared import AmbiguousMatchError, NotFoundError, StorageError

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    def __init__(self) -> None:
        self.matches: dict[str, dict] = {}
        self.teams: dict[str, dict] = {}
        self.players: dict[str, Player] = {}
        self.assignments: list[tuple[str, str]] = []
        self.events: list[Event] = []
        self.calls: list[tuple] = []
        self.fail_on: str | None = None
        self.atomic_runs = 0
        self._seq = itertools.count(1)

    # -- helpers -------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._seq)}"

    def _tick(self) -> datetime:
        return BASE_TIME + timedelta(seconds=next(self._seq))

    def _maybe_fail(self, op: str) -> None:
        if self.fail_on == op:
            raise StorageError(f"storage failure: injected in {op}")

    def _state(self) -> tuple:
        return (self.matches, self.teams, self.players, self.assignments, self.events)

    # -- MatchStore ----------------------------------------------------------

    def run_atomic(self, steps):
        self.atomic_runs += 1
        snapshot = copy.deepcopy(self._state())
        try:
            return steps()
        except Exception:
            (self.matches, self.teams, self.players,
             self.assignments, self.events) = snapshot
            raise

    def find_owned_team_ids(self, match_id):
        return {tid for tid, t in self.teams.items() if t["match_id"] == match_id}

    def find_team(self, team_id):
        t = self.teams.get(team_id)
        return Team(**t) if t else None

    def delete_teams(self, team_ids):
        ids = list(team_ids)
        self.calls.append(("delete_teams", tuple(ids)))
        self._maybe_fail("delete_teams")
        for tid in ids:
            self.teams.pop(tid)
        self.assignments = [a for a in self.assignments if a[0] not in ids]

    def update_team(self, team_id, team):
        self.calls.append(("update_team", team_id))
        self._maybe_fail("update_team")
        t = self.teams.get(team_id)
        if t is None:
            raise NotFoundError(f"Team {team_id} not found.")
        t["name"] = team.name
        t["color"] = team.color.apply(t["color"])
        t["is_home"] = team.is_home.apply(t["is_home"])

    def create_team(self, match_id, team):
        self.calls.append(("create_team", team.name))
        self._maybe_fail("create_team")
        tid = self._next_id("t")
        self.teams[tid] = {
            "id": tid,
            "match_id": match_id,
            "name": team.name,
            "color": team.color.or_default(),
            "is_home": team.is_home.or_default(),
            "created_at": self._tick(),
        }
        return tid

    def find_assignment(self, player_id, match_id):
        owned = self.find_owned_team_ids(match_id)
        hits = [tid for tid, pid in self.assignments if pid == player_id and tid in owned]
        if len(hits) > 1:
            raise AmbiguousMatchError(f"ambiguous_assignment: player={player_id!r}")
        return hits[0] if hits else None

    def assign_player(self, team_id, player_id):
        self.assignments.append((team_id, player_id))

    def match_exists(self, match_id):
        return match_id in self.matches

    def get_match(self, match_id):
        m = self.matches.get(match_id)
        if m is None:
            return None
        teams = tuple(
            Team(
                **t,
                players=tuple(
                    self.players[pid] for tid, pid in self.assignments if tid == t["id"]
                ),
            )
            for t in self.teams.values()
            if t["match_id"] == match_id
        )
        events = tuple(
            sorted(
                (e for e in self.events if e.match_id == match_id),
                key=lambda e: (e.occurred_at, e.created_at),
            )
        )
        return Match(**m, teams=teams, events=events)

    def create_match(self, data):
        self._maybe_fail("create_match")
        mid = self._next_id("m")
        self.matches[mid] = {
            "id": mid,
            "name": data.name,
            "status": data.status.or_default(MatchStatus.SCHEDULED),
            "start_time": data.start_time.or_default(),
            "location": data.location.or_default(),
            "tournament": data.tournament.or_default(),
            "notes": data.notes.or_default(),
            "config": data.config.or_default(),
            "created_at": self._tick(),
        }
        return mid

    def update_match(self, match_id, fields):
        self.calls.append(("update_match", match_id))
        self._maybe_fail("update_match")
        m = self.matches[match_id]
        for column, f in fields.items():
            m[column] = f.apply(m[column])

    def delete_match(self, match_id):
        owned = self.find_owned_team_ids(match_id)
        self.events = [e for e in self.events if e.match_id != match_id]
        self.assignments = [a for a in self.assignments if a[0] not in owned]
        for tid in owned:
            del self.teams[tid]
        del self.matches[match_id]

    def get_player(self, player_id):
        return self.players.get(player_id)

    def create_player(self, data):
        self._maybe_fail("create_player")
        player = Player(
            id=self._next_id("p"),
            name=data.name,
            skill_rating=data.skill_rating.or_default(),
            position_pref=data.position_pref.or_default(),
            created_at=self._tick(),
        )
        self.players[player.id] = player
        return player

    def update_player(self, player_id, fields):
        current = self.players[player_id]
        values = {
            column: f.apply(getattr(current, column)) for column, f in fields.items()
        }
        updated = Player(
            id=current.id,
            name=values.get("name", current.name),
            skill_rating=values.get("skill_rating", current.skill_rating),
            position_pref=values.get("position_pref", current.position_pref),
            created_at=current.created_at,
        )
        self.players[player_id] = updated
        return updated

    def delete_player(self, player_id):
        del self.players[player_id]
        self.assignments = [a for a in self.assignments if a[1] != player_id]

    def create_event(self, match_id, data, team_id):
        self._maybe_fail("create_event")
        created_at = self._tick()
        event = Event(
            id=self._next_id("e"),
            match_id=match_id,
            type=data.type,
            team_id=team_id,
            player_id=data.player_id.or_default(),
            occurred_at=data.occurred_at.or_default(created_at),
            match_minute=data.match_minute.or_default(),
            payload=data.payload.or_default(),
            created_by=data.created_by.or_default(),
            created_at=created_at,
        )
        self.events.append(event)
        return event

    def list_timeline(self, match_id):
        entries = []
        for e in self.get_match(match_id).events:
            team = self.teams.get(e.team_id) if e.team_id else None
            player = self.players.get(e.player_id) if e.player_id else None
            entries.append(TimelineEntry(
                event=e,
                team={"id": team["id"], "name": team["name"],
                      "color": team["color"], "isHome": team["is_home"]} if team else None,
                player={"id": player.id, "name": player.name} if player else None,
            ))
        return entries


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
