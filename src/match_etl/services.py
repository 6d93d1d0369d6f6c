"""match_etl.services

Entity operations composed from the validators, the reconciliation engine,
the cross-reference checker, and a MatchStore.

Each operation validates first, resolves references second, and only then
mutates storage inside one store.run_atomic unit, so a rejected request
never leaves a partial write behind.
"""

from __future__ import annotations

import logging
from typing import Any

from match_etl.crossref import resolve_event_team
from match_etl.csv_tokenizer import CsvParseResult, parse_csv
from match_etl.models import Event, ImportResult, Match, Player, TimelineEntry
from match_etl.reconcile import (
    apply_team_plan,
    plan_team_creation,
    plan_team_reconciliation,
)
from match_etl.records import (
    BatchOutcome,
    PlayerCreate,
    validate_all,
    validate_event_create,
    validate_import_record,
    validate_match_create,
    validate_match_update,
    validate_player_create,
    validate_player_update,
)
from match_etl.shared import (
    AmbiguousMatchError,
    BatchValidationError,
    CsvParseError,
    ImportCounters,
    MalformedInputError,
    NotFoundError,
    ReferentialIntegrityError,
    RejectWriter,
)
from match_etl.store import MatchStore

log = logging.getLogger(__name__)

MATCH_NOT_FOUND = "Match not found."
PLAYER_NOT_FOUND = "Player not found."
TEAM_NOT_FOUND = "Team not found."
NO_RECORDS = "No records found in CSV."
CSV_PARSE_FAILED = "Failed to parse CSV."
CSV_ROWS_INVALID = "Validation failed for one or more rows."
ALREADY_ASSIGNED = "Player is already assigned to a team in this match."


def _require_match(store: MatchStore, match_id: str) -> Match:
    match = store.get_match(match_id)
    if match is None:
        raise NotFoundError(MATCH_NOT_FOUND)
    return match


def _require_player(store: MatchStore, player_id: str) -> Player:
    player = store.get_player(player_id)
    if player is None:
        raise NotFoundError(PLAYER_NOT_FOUND)
    return player


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

def create_match(store: MatchStore, payload: Any) -> Match:
    """Create a match and its initial teams in one transaction."""
    data = validate_match_create(payload)

    def steps() -> Match:
        match_id = store.create_match(data)
        plan = plan_team_creation(match_id, data.teams)
        if plan is not None:
            apply_team_plan(store, plan)
        return _require_match(store, match_id)

    match = store.run_atomic(steps)
    log.info("match %s created with %d team(s)", match.id, len(match.teams))
    return match


def get_match(store: MatchStore, match_id: str) -> Match:
    return _require_match(store, match_id)


def update_match(store: MatchStore, match_id: str, payload: Any) -> Match:
    """Apply a partial update and, when teams are given, reconcile them.

    The team plan is computed against the current owned set before the
    first write; an ownership violation aborts the whole update.
    """
    if not store.match_exists(match_id):
        raise NotFoundError(MATCH_NOT_FOUND)
    data = validate_match_update(payload)

    def steps() -> Match:
        plan = plan_team_reconciliation(
            match_id, store.find_owned_team_ids(match_id), data.teams
        )
        store.update_match(match_id, data.column_fields())
        if plan is not None:
            apply_team_plan(store, plan)
        return _require_match(store, match_id)

    return store.run_atomic(steps)


def delete_match(store: MatchStore, match_id: str) -> None:
    if not store.match_exists(match_id):
        raise NotFoundError(MATCH_NOT_FOUND)
    store.run_atomic(lambda: store.delete_match(match_id))
    log.info("match %s deleted", match_id)


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

def create_player(store: MatchStore, payload: Any) -> Player:
    data = validate_player_create(payload)
    return store.run_atomic(lambda: store.create_player(data))


def get_player(store: MatchStore, player_id: str) -> Player:
    return _require_player(store, player_id)


def update_player(store: MatchStore, player_id: str, payload: Any) -> Player:
    _require_player(store, player_id)
    data = validate_player_update(payload)
    return store.run_atomic(
        lambda: store.update_player(player_id, data.column_fields())
    )


def delete_player(store: MatchStore, player_id: str) -> None:
    _require_player(store, player_id)
    store.run_atomic(lambda: store.delete_player(player_id))


# ---------------------------------------------------------------------------
# CSV import
# ---------------------------------------------------------------------------

def _tokenize_players_csv(text: str) -> CsvParseResult:
    try:
        parsed = parse_csv(text)
    except CsvParseError as exc:
        raise CsvParseError(CSV_PARSE_FAILED, [exc.message]) from None
    if parsed.errors:
        raise BatchValidationError(CSV_PARSE_FAILED, parsed.errors)
    if not parsed.records:
        raise MalformedInputError(NO_RECORDS)
    return parsed


def validate_players_csv(text: str) -> BatchOutcome[PlayerCreate]:
    """Tokenize and batch-validate a player CSV without touching storage.

    Raises CsvParseError for fatal tokenizer problems (the tokenizer message
    goes into details), BatchValidationError when the tokenizer rejected
    individual rows, and MalformedInputError when there are no data rows.
    Row-level field failures are returned in the outcome.
    """
    return validate_all(validate_import_record, _tokenize_players_csv(text).records)


def import_players_csv(
    store: MatchStore,
    text: str,
    counters: ImportCounters | None = None,
    rejects: RejectWriter | None = None,
) -> ImportResult:
    """Validate every row, then create all players in one transaction.

    A single bad row fails the import with zero players created.
    """
    counters = counters if counters is not None else ImportCounters()
    parsed = _tokenize_players_csv(text)
    counters.warnings.extend(parsed.warnings)
    batch = validate_all(validate_import_record, parsed.records)
    counters.rows_read = len(batch.values) + len(batch.rejected)

    if not batch.ok:
        counters.rows_rejected = len(batch.rejected)
        if rejects is not None:
            for record, reason in batch.rejected:
                rejects.write(record, reason)
        raise BatchValidationError(CSV_ROWS_INVALID, batch.errors)

    players = store.run_atomic(
        lambda: [store.create_player(data) for data in batch.values]
    )
    counters.players_created = len(players)
    log.info("imported %d player(s) from CSV", len(players))
    return ImportResult(imported=len(players), players=players)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

def assign_player(store: MatchStore, team_id: str, player_id: str) -> None:
    """Put a player on a team; a player plays for one team per match."""
    team = store.find_team(team_id)
    if team is None:
        raise NotFoundError(TEAM_NOT_FOUND)
    _require_player(store, player_id)

    def steps() -> None:
        try:
            existing = store.find_assignment(player_id, team.match_id)
        except AmbiguousMatchError:
            raise ReferentialIntegrityError(ALREADY_ASSIGNED) from None
        if existing is not None:
            raise ReferentialIntegrityError(ALREADY_ASSIGNED)
        store.assign_player(team_id, player_id)

    store.run_atomic(steps)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def create_event(store: MatchStore, match_id: str, payload: Any) -> Event:
    """Record an event after resolving its team against the match.

    With only a player given, the event inherits the player's team.
    """
    if not store.match_exists(match_id):
        raise NotFoundError(MATCH_NOT_FOUND)
    data = validate_event_create(payload)

    def steps() -> Event:
        team_id = resolve_event_team(
            store,
            match_id,
            data.team_id.or_default(),
            data.player_id.or_default(),
        )
        return store.create_event(match_id, data, team_id)

    return store.run_atomic(steps)


def match_timeline(store: MatchStore, match_id: str) -> list[TimelineEntry]:
    if not store.match_exists(match_id):
        raise NotFoundError(MATCH_NOT_FOUND)
    return store.list_timeline(match_id)
