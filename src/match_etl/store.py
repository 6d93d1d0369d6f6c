"""match_etl.store

Storage collaborator for the validation core.

MatchStore is the narrow interface the services and the reconciliation
engine talk to; PgMatchStore implements it on PostgreSQL with psycopg.
Missing rows come back as None (lookups) or NotFoundError (mutations);
engine failures are raised as StorageError.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol, TypeVar

import psycopg

from match_etl.models import (
    Event,
    Match,
    MatchStatus,
    OpaqueBlob,
    Player,
    Team,
    TimelineEntry,
)
from match_etl.normalize import Field
from match_etl.records import EventCreate, MatchCreate, PlayerCreate, TeamInput
from match_etl.shared import AmbiguousMatchError, NotFoundError, StorageError

log = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class MatchStore(Protocol):
    def run_atomic(self, steps: Callable[[], T]) -> T:
        """Run steps in one transaction; roll everything back if they raise."""
        ...

    # teams / assignments
    def find_owned_team_ids(self, match_id: str) -> set[str]: ...
    def find_team(self, team_id: str) -> Team | None: ...
    def delete_teams(self, team_ids: Iterable[str]) -> None: ...
    def update_team(self, team_id: str, team: TeamInput) -> None: ...
    def create_team(self, match_id: str, team: TeamInput) -> str: ...
    def find_assignment(self, player_id: str, match_id: str) -> str | None: ...
    def assign_player(self, team_id: str, player_id: str) -> None: ...

    # matches
    def match_exists(self, match_id: str) -> bool: ...
    def get_match(self, match_id: str) -> Match | None: ...
    def create_match(self, data: MatchCreate) -> str: ...
    def update_match(self, match_id: str, fields: Mapping[str, Field[Any]]) -> None: ...
    def delete_match(self, match_id: str) -> None: ...

    # players
    def get_player(self, player_id: str) -> Player | None: ...
    def create_player(self, data: PlayerCreate) -> Player: ...
    def update_player(self, player_id: str, fields: Mapping[str, Field[Any]]) -> Player: ...
    def delete_player(self, player_id: str) -> None: ...

    # events
    def create_event(self, match_id: str, data: EventCreate, team_id: str | None) -> Event: ...
    def list_timeline(self, match_id: str) -> list[TimelineEntry]: ...


# ---------------------------------------------------------------------------
# Column value adaptation
# ---------------------------------------------------------------------------

def _db_value(value: Any) -> Any:
    if isinstance(value, MatchStatus):
        return value.value
    if isinstance(value, OpaqueBlob):
        return value.text
    return value


def _set_clause(
    fields: Mapping[str, Field[Any]],
    json_columns: frozenset[str] = frozenset(),
) -> tuple[list[str], list[Any]]:
    """Build "col = %s" fragments for every field that is not ABSENT."""
    fragments: list[str] = []
    params: list[Any] = []
    for column, f in fields.items():
        if f.is_absent:
            continue
        placeholder = "%s::jsonb" if column in json_columns else "%s"
        fragments.append(f"{column} = {placeholder}")
        params.append(_db_value(f.apply(None)))
    return fragments, params


def _blob(value: Any) -> OpaqueBlob | None:
    return OpaqueBlob.from_value(value) if value is not None else None


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

_MATCH_COLS = (
    "id, name, status, start_time, location, tournament, notes, config, created_at"
)
_EVENT_COLS = (
    "id, match_id, type, team_id, player_id, occurred_at, match_minute, "
    "payload, created_by, created_at"
)
_PLAYER_COLS = "id, name, skill_rating, position_pref, created_at"


def _event_from_row(row: tuple) -> Event:
    return Event(
        id=str(row[0]),
        match_id=str(row[1]),
        type=row[2],
        team_id=str(row[3]) if row[3] else None,
        player_id=str(row[4]) if row[4] else None,
        occurred_at=row[5],
        match_minute=row[6],
        payload=_blob(row[7]),
        created_by=row[8],
        created_at=row[9],
    )


def _player_from_row(row: tuple) -> Player:
    return Player(
        id=str(row[0]),
        name=row[1],
        skill_rating=row[2],
        position_pref=row[3],
        created_at=row[4],
    )


class PgMatchStore:
    """MatchStore on a psycopg connection (caller owns the connection)."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _execute(self, sql: str, params: Iterable[Any] | None = None) -> psycopg.Cursor:
        try:
            return self._conn.execute(sql, params)
        except psycopg.Error as exc:
            raise StorageError(f"storage failure: {exc}") from exc

    def run_atomic(self, steps: Callable[[], T]) -> T:
        try:
            with self._conn.transaction():
                return steps()
        except psycopg.Error as exc:
            raise StorageError(f"storage failure: {exc}") from exc

    # -- teams / assignments -------------------------------------------------

    def find_owned_team_ids(self, match_id: str) -> set[str]:
        rows = self._execute(
            "SELECT id FROM team WHERE match_id = %s", (match_id,)
        ).fetchall()
        return {str(r[0]) for r in rows}

    def find_team(self, team_id: str) -> Team | None:
        row = self._execute(
            "SELECT id, match_id, name, color, is_home, created_at FROM team WHERE id = %s",
            (team_id,),
        ).fetchone()
        if row is None:
            return None
        return Team(
            id=str(row[0]), match_id=str(row[1]), name=row[2],
            color=row[3], is_home=row[4], created_at=row[5],
        )

    def delete_teams(self, team_ids: Iterable[str]) -> None:
        ids = list(team_ids)
        if not ids:
            return
        self._execute("DELETE FROM team WHERE id = ANY(%s::text[])", (ids,))

    def update_team(self, team_id: str, team: TeamInput) -> None:
        fragments, params = _set_clause({
            "name": Field.of(team.name),
            "color": team.color,
            "is_home": team.is_home,
        })
        cur = self._execute(
            f"UPDATE team SET {', '.join(fragments)}, updated_at = clock_timestamp() "
            "WHERE id = %s",
            (*params, team_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Team {team_id} not found.")

    def create_team(self, match_id: str, team: TeamInput) -> str:
        row = self._execute(
            """
            INSERT INTO team (match_id, name, color, is_home)
            VALUES (%s, %s, %s, %s)
            RETURNING id
            """,
            (match_id, team.name, team.color.or_default(), team.is_home.or_default()),
        ).fetchone()
        return str(row[0])

    def find_assignment(self, player_id: str, match_id: str) -> str | None:
        rows = self._execute(
            """
            SELECT tp.team_id
            FROM team_player tp
            JOIN team t ON t.id = tp.team_id
            WHERE tp.player_id = %s AND t.match_id = %s
            ORDER BY tp.created_at ASC
            LIMIT 2
            """,
            (player_id, match_id),
        ).fetchall()
        if not rows:
            return None
        if len(rows) > 1:
            raise AmbiguousMatchError(
                f"ambiguous_assignment: player={player_id!r} match={match_id!r}"
            )
        return str(rows[0][0])

    def assign_player(self, team_id: str, player_id: str) -> None:
        self._execute(
            "INSERT INTO team_player (team_id, player_id) VALUES (%s, %s)",
            (team_id, player_id),
        )

    # -- matches -------------------------------------------------------------

    def match_exists(self, match_id: str) -> bool:
        row = self._execute("SELECT 1 FROM match WHERE id = %s", (match_id,)).fetchone()
        return row is not None

    def get_match(self, match_id: str) -> Match | None:
        row = self._execute(
            f"SELECT {_MATCH_COLS} FROM match WHERE id = %s", (match_id,)
        ).fetchone()
        if row is None:
            return None

        assigned: dict[str, list[Player]] = {}
        for r in self._execute(
            f"""
            SELECT tp.team_id, p.id, p.name, p.skill_rating, p.position_pref, p.created_at
            FROM team_player tp
            JOIN team t ON t.id = tp.team_id
            JOIN player p ON p.id = tp.player_id
            WHERE t.match_id = %s
            ORDER BY tp.created_at ASC, tp.id ASC
            """,
            (match_id,),
        ).fetchall():
            assigned.setdefault(str(r[0]), []).append(_player_from_row(r[1:]))

        teams = tuple(
            Team(
                id=str(t[0]), match_id=str(t[1]), name=t[2], color=t[3],
                is_home=t[4], created_at=t[5],
                players=tuple(assigned.get(str(t[0]), [])),
            )
            for t in self._execute(
                """
                SELECT id, match_id, name, color, is_home, created_at
                FROM team WHERE match_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (match_id,),
            ).fetchall()
        )

        events = tuple(
            _event_from_row(e)
            for e in self._execute(
                f"""
                SELECT {_EVENT_COLS} FROM match_event
                WHERE match_id = %s
                ORDER BY occurred_at ASC, created_at ASC, id ASC
                """,
                (match_id,),
            ).fetchall()
        )

        return Match(
            id=str(row[0]),
            name=row[1],
            status=MatchStatus(row[2]),
            start_time=row[3],
            location=row[4],
            tournament=row[5],
            notes=row[6],
            config=_blob(row[7]),
            created_at=row[8],
            teams=teams,
            events=events,
        )

    def create_match(self, data: MatchCreate) -> str:
        status = data.status.or_default(MatchStatus.SCHEDULED)
        config = data.config.or_default()
        row = self._execute(
            """
            INSERT INTO match
              (name, status, start_time, location, tournament, notes, config)
            VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
            RETURNING id
            """,
            (
                data.name,
                status.value,
                data.start_time.or_default(),
                data.location.or_default(),
                data.tournament.or_default(),
                data.notes.or_default(),
                config.text if config is not None else None,
            ),
        ).fetchone()
        return str(row[0])

    def update_match(self, match_id: str, fields: Mapping[str, Field[Any]]) -> None:
        fragments, params = _set_clause(fields, json_columns=frozenset({"config"}))
        if not fragments:
            return
        cur = self._execute(
            f"UPDATE match SET {', '.join(fragments)}, updated_at = clock_timestamp() "
            "WHERE id = %s",
            (*params, match_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Match not found.")

    def delete_match(self, match_id: str) -> None:
        self._execute("DELETE FROM match_event WHERE match_id = %s", (match_id,))
        self._execute(
            """
            DELETE FROM team_player
            WHERE team_id IN (SELECT id FROM team WHERE match_id = %s)
            """,
            (match_id,),
        )
        self._execute("DELETE FROM team WHERE match_id = %s", (match_id,))
        cur = self._execute("DELETE FROM match WHERE id = %s", (match_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Match not found.")

    # -- players -------------------------------------------------------------

    def get_player(self, player_id: str) -> Player | None:
        row = self._execute(
            f"SELECT {_PLAYER_COLS} FROM player WHERE id = %s", (player_id,)
        ).fetchone()
        return _player_from_row(row) if row else None

    def create_player(self, data: PlayerCreate) -> Player:
        row = self._execute(
            f"""
            INSERT INTO player (name, skill_rating, position_pref)
            VALUES (%s, %s, %s)
            RETURNING {_PLAYER_COLS}
            """,
            (data.name, data.skill_rating.or_default(), data.position_pref.or_default()),
        ).fetchone()
        return _player_from_row(row)

    def update_player(self, player_id: str, fields: Mapping[str, Field[Any]]) -> Player:
        fragments, params = _set_clause(fields)
        if not fragments:
            player = self.get_player(player_id)
            if player is None:
                raise NotFoundError("Player not found.")
            return player
        row = self._execute(
            f"""
            UPDATE player SET {', '.join(fragments)}, updated_at = clock_timestamp()
            WHERE id = %s
            RETURNING {_PLAYER_COLS}
            """,
            (*params, player_id),
        ).fetchone()
        if row is None:
            raise NotFoundError("Player not found.")
        return _player_from_row(row)

    def delete_player(self, player_id: str) -> None:
        cur = self._execute("DELETE FROM player WHERE id = %s", (player_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Player not found.")

    # -- events --------------------------------------------------------------

    def create_event(self, match_id: str, data: EventCreate, team_id: str | None) -> Event:
        payload = data.payload.or_default()
        row = self._execute(
            f"""
            INSERT INTO match_event
              (match_id, team_id, player_id, type, occurred_at,
               match_minute, payload, created_by)
            VALUES (%s, %s, %s, %s, COALESCE(%s, clock_timestamp()), %s, %s::jsonb, %s)
            RETURNING {_EVENT_COLS}
            """,
            (
                match_id,
                team_id,
                data.player_id.or_default(),
                data.type,
                data.occurred_at.or_default(),
                data.match_minute.or_default(),
                payload.text if payload is not None else None,
                data.created_by.or_default(),
            ),
        ).fetchone()
        log.debug("event %s recorded on match %s", row[0], match_id)
        return _event_from_row(row)

    def list_timeline(self, match_id: str) -> list[TimelineEntry]:
        rows = self._execute(
            """
            SELECT e.id, e.match_id, e.type, e.team_id, e.player_id, e.occurred_at,
                   e.match_minute, e.payload, e.created_by, e.created_at,
                   t.name, t.color, t.is_home, p.name
            FROM match_event e
            LEFT JOIN team t ON t.id = e.team_id
            LEFT JOIN player p ON p.id = e.player_id
            WHERE e.match_id = %s
            ORDER BY e.occurred_at ASC, e.created_at ASC, e.id ASC
            """,
            (match_id,),
        ).fetchall()
        entries: list[TimelineEntry] = []
        for r in rows:
            event = _event_from_row(r[:10])
            team = (
                {"id": event.team_id, "name": r[10], "color": r[11], "isHome": r[12]}
                if event.team_id else None
            )
            player = {"id": event.player_id, "name": r[13]} if event.player_id else None
            entries.append(TimelineEntry(event=event, team=team, player=player))
        return entries
