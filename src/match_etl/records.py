"""match_etl.records

Whole-record validation for match, team, player and event payloads.

Validators compose the field parsers in match_etl.normalize, never touch
storage, and stop at the first violated field.  Two strategies run them:

  validate_one(validator, payload)  — fail-fast, returns an Outcome
  validate_all(validator, records)  — batch, checks every row and returns a
                                      BatchOutcome with "Row <n>: ..." details
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from match_etl.models import MatchStatus, OpaqueBlob
from match_etl.normalize import (
    ABSENT,
    MISSING,
    Field,
    parse_date,
    parse_id,
    parse_match_minute,
    parse_opaque,
    parse_optional_boolean,
    parse_optional_string,
    parse_required_string,
    parse_skill_rating,
    parse_status,
)
from match_etl.shared import FieldValidationError, IngestError, MalformedInputError

T = TypeVar("T")

BODY_NOT_OBJECT = "Body must be a JSON object."
EMPTY_UPDATE = "At least one field must be provided for update."


# ---------------------------------------------------------------------------
# Validated input shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TeamInput:
    """One incoming team descriptor; id is None for a team to be created."""

    name: str
    id: str | None = None
    color: Field[str] = ABSENT
    is_home: Field[bool] = ABSENT


@dataclass(frozen=True)
class MatchCreate:
    name: str
    status: Field[MatchStatus] = ABSENT
    start_time: Field[datetime] = ABSENT
    location: Field[str] = ABSENT
    tournament: Field[str] = ABSENT
    notes: Field[str] = ABSENT
    config: Field[OpaqueBlob] = ABSENT
    teams: Field[list[TeamInput]] = ABSENT


@dataclass(frozen=True)
class MatchUpdate:
    name: Field[str] = ABSENT
    status: Field[MatchStatus] = ABSENT
    start_time: Field[datetime] = ABSENT
    location: Field[str] = ABSENT
    tournament: Field[str] = ABSENT
    notes: Field[str] = ABSENT
    config: Field[OpaqueBlob] = ABSENT
    teams: Field[list[TeamInput]] = ABSENT

    def column_fields(self) -> dict[str, Field[Any]]:
        """Scalar match columns (everything except teams)."""
        return {
            "name": self.name,
            "status": self.status,
            "start_time": self.start_time,
            "location": self.location,
            "tournament": self.tournament,
            "notes": self.notes,
            "config": self.config,
        }


@dataclass(frozen=True)
class PlayerCreate:
    name: str
    skill_rating: Field[int] = ABSENT
    position_pref: Field[str] = ABSENT


@dataclass(frozen=True)
class PlayerUpdate:
    name: Field[str] = ABSENT
    skill_rating: Field[int] = ABSENT
    position_pref: Field[str] = ABSENT

    def column_fields(self) -> dict[str, Field[Any]]:
        return {
            "name": self.name,
            "skill_rating": self.skill_rating,
            "position_pref": self.position_pref,
        }


@dataclass(frozen=True)
class EventCreate:
    type: str
    team_id: Field[str] = ABSENT
    player_id: Field[str] = ABSENT
    occurred_at: Field[datetime] = ABSENT
    match_minute: Field[int] = ABSENT
    payload: Field[OpaqueBlob] = ABSENT
    created_by: Field[str] = ABSENT


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedInputError(BODY_NOT_OBJECT)
    return payload


def _require_non_empty(fields: Mapping[str, Field[Any]]) -> None:
    if all(f.is_absent for f in fields.values()):
        raise FieldValidationError(EMPTY_UPDATE)


def _parse_config(value: Any, allow_empty: bool) -> Field[OpaqueBlob]:
    return parse_opaque(value, allow_empty, label="Config", shape="an object")


def _parse_teams(value: Any, allow_empty: bool) -> Field[list[TeamInput]]:
    """Create: missing/null/non-list teams are dropped.

    Update: null means "no teams" (every owned team is deleted) and a
    non-list value is rejected.
    """
    if value is MISSING or value is None:
        if allow_empty or value is MISSING:
            return ABSENT
        return Field.of([])
    if not isinstance(value, list):
        if allow_empty:
            return ABSENT
        raise FieldValidationError("Teams must be an array.", field="teams")
    return Field.of([validate_team(item) for item in value])


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------

def validate_team(payload: Any) -> TeamInput:
    if not isinstance(payload, Mapping):
        raise FieldValidationError("Each team must be an object.", field="teams")
    team_id = parse_id(payload.get("id", MISSING), allow_empty=True, label="id")
    return TeamInput(
        name=parse_required_string(payload.get("name", MISSING), "Team name"),
        id=team_id.value if team_id.is_set else None,
        color=parse_optional_string(payload.get("color", MISSING), "Color"),
        is_home=parse_optional_boolean(payload.get("isHome", MISSING), "Home flag"),
    )


# ---------------------------------------------------------------------------
# Match
# ---------------------------------------------------------------------------

def validate_match_create(payload: Any) -> MatchCreate:
    body = _require_mapping(payload)
    return MatchCreate(
        name=parse_required_string(body.get("name", MISSING), "Name"),
        status=parse_status(body.get("status", MISSING), allow_empty=True),
        start_time=parse_date(body.get("startTime", MISSING), allow_empty=True, label="Start time"),
        location=parse_optional_string(body.get("location", MISSING), "Location"),
        tournament=parse_optional_string(body.get("tournament", MISSING), "Tournament"),
        notes=parse_optional_string(body.get("notes", MISSING), "Notes"),
        config=_parse_config(body.get("config", MISSING), allow_empty=True),
        teams=_parse_teams(body.get("teams", MISSING), allow_empty=True),
    )


def validate_match_update(payload: Any) -> MatchUpdate:
    """Validate only the keys present in payload."""
    body = _require_mapping(payload)
    fields: dict[str, Field[Any]] = {}

    if "name" in body:
        fields["name"] = Field.of(parse_required_string(body["name"], "Name"))
    if "status" in body:
        fields["status"] = parse_status(body["status"], allow_empty=False)
    if "startTime" in body:
        fields["start_time"] = parse_date(body["startTime"], allow_empty=False, label="Start time")
    if "location" in body:
        fields["location"] = parse_optional_string(body["location"], "Location")
    if "tournament" in body:
        fields["tournament"] = parse_optional_string(body["tournament"], "Tournament")
    if "notes" in body:
        fields["notes"] = parse_optional_string(body["notes"], "Notes")
    if "config" in body:
        fields["config"] = _parse_config(body["config"], allow_empty=False)
    if "teams" in body:
        fields["teams"] = _parse_teams(body["teams"], allow_empty=False)

    _require_non_empty(fields)
    return MatchUpdate(**fields)


# ---------------------------------------------------------------------------
# Player
# ---------------------------------------------------------------------------

def validate_player_create(payload: Any) -> PlayerCreate:
    body = _require_mapping(payload)
    return PlayerCreate(
        name=parse_required_string(body.get("name", MISSING), "Name"),
        skill_rating=parse_skill_rating(body.get("skillRating", MISSING), allow_empty=True),
        position_pref=parse_optional_string(
            body.get("positionPref", MISSING), "Preferred position", clear_on_empty=False
        ),
    )


def validate_player_update(payload: Any) -> PlayerUpdate:
    body = _require_mapping(payload)
    fields: dict[str, Field[Any]] = {}

    if "name" in body:
        fields["name"] = Field.of(parse_required_string(body["name"], "Name"))
    if "skillRating" in body:
        fields["skill_rating"] = parse_skill_rating(body["skillRating"], allow_empty=False)
    if "positionPref" in body:
        fields["position_pref"] = parse_optional_string(
            body["positionPref"], "Preferred position"
        )

    _require_non_empty(fields)
    return PlayerUpdate(**fields)


def validate_import_record(record: Mapping[str, str]) -> PlayerCreate:
    """Validate one CSV row keyed by normalized header names."""
    return PlayerCreate(
        name=parse_required_string(record.get("name", MISSING), "Name"),
        skill_rating=parse_skill_rating(record.get("skillrating", MISSING), allow_empty=True),
        position_pref=parse_optional_string(
            record.get("positionpref", MISSING), "Preferred position", clear_on_empty=False
        ),
    )


# ---------------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------------

def validate_event_create(payload: Any) -> EventCreate:
    body = _require_mapping(payload)
    return EventCreate(
        type=parse_required_string(body.get("type", MISSING), "Event type"),
        team_id=parse_id(body.get("teamId", MISSING), allow_empty=True, label="teamId"),
        player_id=parse_id(body.get("playerId", MISSING), allow_empty=True, label="playerId"),
        occurred_at=parse_date(body.get("occurredAt", MISSING), allow_empty=True, label="Occurred at"),
        match_minute=parse_match_minute(body.get("matchMinute", MISSING), allow_empty=True),
        payload=parse_opaque(
            body.get("payload", MISSING), allow_empty=True,
            label="Payload", shape="an object or array",
        ),
        created_by=parse_optional_string(body.get("createdBy", MISSING), "Created by"),
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a validated value or the single error that stopped validation."""

    value: T | None = None
    error: IngestError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass
class BatchOutcome(Generic[T]):
    values: list[T] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    rejected: list[tuple[Any, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_one(validator: Callable[[Any], T], payload: Any) -> Outcome[T]:
    """Fail-fast: run validator once and capture its first error."""
    try:
        return Outcome(value=validator(payload))
    except IngestError as exc:
        return Outcome(error=exc)


def validate_all(
    validator: Callable[[Any], T],
    records: Iterable[Any],
) -> BatchOutcome[T]:
    """Batch: validate every record, collecting one message per bad row.

    Records carrying a ``row_number`` attribute (CsvRecord) report it;
    otherwise rows are numbered from 2 so the header counts as row 1.
    """
    batch: BatchOutcome[T] = BatchOutcome()
    for idx, record in enumerate(records):
        row_number = getattr(record, "row_number", idx + 2)
        outcome = validate_one(validator, record)
        if outcome.ok:
            batch.values.append(outcome.value)  # type: ignore[arg-type]
        else:
            batch.errors.append(f"Row {row_number}: {outcome.error.message}")  # type: ignore[union-attr]
            batch.rejected.append((record, outcome.error.message))  # type: ignore[union-attr]
    return batch
