"""Integration tests for PgMatchStore and the services running on it.

Each test gets a freshly migrated database; data is created through the
service layer so the SQL paths are exercised end to end.
"""

from __future__ import annotations

from datetime import datetime, timezone

import psycopg
import pytest

from match_etl import services
from match_etl.models import MatchStatus
from match_etl.normalize import Field
from match_etl.records import TeamInput
from match_etl.shared import (
    AmbiguousMatchError,
    BatchValidationError,
    NotFoundError,
    ReferentialIntegrityError,
    StorageError,
)


def _count(conn: psycopg.Connection, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# Matches and team reconciliation
# ---------------------------------------------------------------------------

class TestMatchLifecycle:
    def test_create_and_show(self, pg_store):
        match = services.create_match(pg_store, {
            "name": "Final",
            "status": "in_progress",
            "startTime": "2024-06-01T15:00:00Z",
            "config": {"halves": 2, "minutes": 45},
            "teams": [{"name": "Reds", "color": "red", "isHome": True}, {"name": "Blues"}],
        })
        assert match.status is MatchStatus.IN_PROGRESS
        assert match.start_time == datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
        assert match.config.load() == {"halves": 2, "minutes": 45}
        assert [t.name for t in match.teams] == ["Reds", "Blues"]
        assert match.teams[0].is_home is True
        assert match.teams[1].color is None

        shown = services.get_match(pg_store, match.id)
        assert shown.to_dict()["teams"][0]["matchId"] == match.id

    def test_partial_update_keeps_omitted_columns(self, pg_store):
        match = services.create_match(pg_store, {
            "name": "Final", "location": "Field 3", "notes": "bring ball",
        })
        updated = services.update_match(pg_store, match.id, {"notes": None, "status": "finished"})
        assert updated.location == "Field 3"
        assert updated.notes is None
        assert updated.status is MatchStatus.FINISHED
        assert updated.name == "Final"

    def test_reconcile_update_create_delete(self, db_conn, pg_store):
        conn, _ = db_conn
        match = services.create_match(pg_store, {
            "name": "Final", "teams": [{"name": "A"}, {"name": "B"}],
        })
        a, b = (t.id for t in match.teams)
        updated = services.update_match(pg_store, match.id, {
            "teams": [{"id": a, "name": "A2", "color": "gold"}, {"name": "C"}],
        })
        by_name = {t.name: t for t in updated.teams}
        assert set(by_name) == {"A2", "C"}
        assert by_name["A2"].id == a
        assert by_name["A2"].color == "gold"
        assert conn.execute("SELECT 1 FROM team WHERE id = %s", (b,)).fetchone() is None

    def test_foreign_team_leaves_database_untouched(self, db_conn, pg_store):
        conn, _ = db_conn
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A"}, {"name": "B"}]})
        other = services.create_match(pg_store, {"name": "Other", "teams": [{"name": "X"}]})
        a = match.teams[0].id
        foreign = other.teams[0].id
        with pytest.raises(ReferentialIntegrityError):
            services.update_match(pg_store, match.id, {
                "name": "Changed",
                "teams": [{"id": a, "name": "Renamed"}, {"id": foreign, "name": "X"}],
            })
        after = services.get_match(pg_store, match.id)
        assert after.name == "Final"
        assert [t.name for t in after.teams] == ["A", "B"]
        assert _count(conn, "team") == 3

    def test_delete_cascades(self, db_conn, pg_store):
        conn, _ = db_conn
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A"}]})
        player = services.create_player(pg_store, {"name": "Ada"})
        services.assign_player(pg_store, match.teams[0].id, player.id)
        services.create_event(pg_store, match.id, {"type": "GOAL", "playerId": player.id})
        services.delete_match(pg_store, match.id)
        assert _count(conn, "match") == 0
        assert _count(conn, "team") == 0
        assert _count(conn, "team_player") == 0
        assert _count(conn, "match_event") == 0
        assert _count(conn, "player") == 1

    def test_missing_match(self, pg_store):
        with pytest.raises(NotFoundError, match="Match not found."):
            services.get_match(pg_store, "does-not-exist")


# ---------------------------------------------------------------------------
# Store-level behaviour
# ---------------------------------------------------------------------------

class TestPgMatchStore:
    def test_update_missing_team(self, pg_store):
        with pytest.raises(NotFoundError):
            pg_store.run_atomic(lambda: pg_store.update_team("nope", TeamInput(name="X")))

    def test_team_cannot_change_match(self, db_conn, pg_store):
        conn, _ = db_conn
        m1 = services.create_match(pg_store, {"name": "One", "teams": [{"name": "A"}]})
        m2 = services.create_match(pg_store, {"name": "Two"})

        def move():
            conn.execute(
                "UPDATE team SET match_id = %s WHERE id = %s", (m2.id, m1.teams[0].id)
            )

        with pytest.raises(StorageError):
            pg_store.run_atomic(move)

    def test_ambiguous_assignment_detected(self, db_conn, pg_store):
        conn, _ = db_conn
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A"}, {"name": "B"}]})
        player = services.create_player(pg_store, {"name": "Ada"})
        # Bypass the service guard to build a legacy double assignment.
        pg_store.run_atomic(lambda: [pg_store.assign_player(t.id, player.id) for t in match.teams])
        with pytest.raises(AmbiguousMatchError):
            pg_store.find_assignment(player.id, match.id)
        with pytest.raises(ReferentialIntegrityError, match="more than one team"):
            services.create_event(pg_store, match.id, {"type": "GOAL", "playerId": player.id})

    def test_update_match_ignores_absent_fields(self, pg_store):
        match = services.create_match(pg_store, {"name": "Final", "location": "Field 3"})
        pg_store.run_atomic(lambda: pg_store.update_match(match.id, {"name": Field.of("F2")}))
        shown = pg_store.get_match(match.id)
        assert shown.name == "F2"
        assert shown.location == "Field 3"


# ---------------------------------------------------------------------------
# Players and CSV import
# ---------------------------------------------------------------------------

class TestPlayers:
    def test_crud(self, pg_store):
        player = services.create_player(pg_store, {"name": "Ada", "skillRating": 5, "positionPref": "GK"})
        updated = services.update_player(pg_store, player.id, {"skillRating": None})
        assert updated.skill_rating is None
        assert updated.position_pref == "GK"
        services.delete_player(pg_store, player.id)
        with pytest.raises(NotFoundError, match="Player not found."):
            services.get_player(pg_store, player.id)

    def test_import(self, db_conn, pg_store):
        conn, _ = db_conn
        result = services.import_players_csv(
            pg_store, "\ufeffName,Skill Rating,Position-Pref\r\nAda,5,GK\r\n\"Lovelace, A\",,\r\n"
        )
        assert result.imported == 2
        assert {p.name for p in result.players} == {"Ada", "Lovelace, A"}
        assert _count(conn, "player") == 2

    def test_import_one_bad_row_creates_nothing(self, db_conn, pg_store):
        conn, _ = db_conn
        text = "name,skillrating\n" + "".join(f"P{i},{i}\n" for i in range(10)) + ",4\n"
        with pytest.raises(BatchValidationError) as excinfo:
            services.import_players_csv(pg_store, text)
        assert excinfo.value.details == ["Row 12: Name is required."]
        assert _count(conn, "player") == 0


# ---------------------------------------------------------------------------
# Events and timeline
# ---------------------------------------------------------------------------

class TestEvents:
    def test_player_only_event_gets_assignment_team(self, pg_store):
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A"}, {"name": "B"}]})
        a = match.teams[0].id
        player = services.create_player(pg_store, {"name": "Ada"})
        services.assign_player(pg_store, a, player.id)
        event = services.create_event(pg_store, match.id, {
            "type": "GOAL", "playerId": player.id, "matchMinute": 33.6, "payload": {"assist": None},
        })
        assert event.team_id == a
        assert event.match_minute == 33
        assert event.payload.load() == {"assist": None}
        assert event.occurred_at is not None

    def test_conflicting_team_rejected(self, db_conn, pg_store):
        conn, _ = db_conn
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A"}, {"name": "B"}]})
        a, b = (t.id for t in match.teams)
        player = services.create_player(pg_store, {"name": "Ada"})
        services.assign_player(pg_store, a, player.id)
        with pytest.raises(ReferentialIntegrityError, match="does not match the provided team"):
            services.create_event(pg_store, match.id, {"type": "GOAL", "teamId": b, "playerId": player.id})
        assert _count(conn, "match_event") == 0

    def test_second_assignment_in_match_rejected(self, pg_store):
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A"}, {"name": "B"}]})
        player = services.create_player(pg_store, {"name": "Ada"})
        services.assign_player(pg_store, match.teams[0].id, player.id)
        with pytest.raises(ReferentialIntegrityError, match="already assigned"):
            services.assign_player(pg_store, match.teams[1].id, player.id)

    def test_timeline_order_and_summaries(self, pg_store):
        match = services.create_match(pg_store, {"name": "Final", "teams": [{"name": "A", "color": "red"}]})
        a = match.teams[0].id
        player = services.create_player(pg_store, {"name": "Ada"})
        services.assign_player(pg_store, a, player.id)
        services.create_event(pg_store, match.id, {
            "type": "GOAL", "playerId": player.id, "occurredAt": "2024-06-01T15:30:00Z",
        })
        services.create_event(pg_store, match.id, {"type": "KICKOFF", "occurredAt": "2024-06-01T15:00:00Z"})
        services.create_event(pg_store, match.id, {"type": "NOTE", "occurredAt": "2024-06-01T15:30:00Z"})

        timeline = services.match_timeline(pg_store, match.id)
        assert [e.event.type for e in timeline] == ["KICKOFF", "GOAL", "NOTE"]
        assert timeline[1].team == {"id": a, "name": "A", "color": "red", "isHome": None}
        assert timeline[1].player == {"id": player.id, "name": "Ada"}
        assert timeline[0].team is None and timeline[0].player is None

        shown = services.get_match(pg_store, match.id)
        assert [e.type for e in shown.events] == ["KICKOFF", "GOAL", "NOTE"]
        assert [p.name for p in shown.teams[0].players] == ["Ada"]
