"""Field-level normalization for match, team, player and event payloads.

Every parser takes one raw value (``MISSING`` when the key was not supplied)
and returns a ``Field`` carrying one of three states:

  ABSENT — not supplied; leave the stored value alone / use the default
  CLEAR  — supplied as null or empty; clear the stored value
  SET    — supplied with a usable value

Required-value parsers return the bare value instead.  All parsers raise
FieldValidationError on the first rule they find violated.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from match_etl.models import MatchStatus, OpaqueBlob
from match_etl.shared import FieldValidationError

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Tri-state field value
# ---------------------------------------------------------------------------

class _Missing:
    """Sentinel for a key that is not present in the input mapping."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class FieldState(enum.Enum):
    ABSENT = "absent"
    CLEAR = "clear"
    SET = "set"


@dataclass(frozen=True)
class Field(Generic[T]):
    state: FieldState
    value: T | None = None

    @classmethod
    def of(cls, value: T) -> Field[T]:
        return cls(FieldState.SET, value)

    @property
    def is_absent(self) -> bool:
        return self.state is FieldState.ABSENT

    @property
    def is_clear(self) -> bool:
        return self.state is FieldState.CLEAR

    @property
    def is_set(self) -> bool:
        return self.state is FieldState.SET

    def apply(self, current: Any) -> Any:
        """Return the value to store given the currently stored value."""
        if self.state is FieldState.ABSENT:
            return current
        if self.state is FieldState.CLEAR:
            return None
        return self.value

    def or_default(self, default: Any = None) -> Any:
        """Return the value to store on create."""
        return self.value if self.state is FieldState.SET else default


ABSENT: Field[Any] = Field(FieldState.ABSENT)
CLEAR: Field[Any] = Field(FieldState.CLEAR)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float | None:
    """Coerce a number or numeric string; None when it is not finite."""
    if _is_number(value):
        numeric = float(value)
    elif isinstance(value, str) and "_" in value:
        # float() accepts digit separators; "1_000" is not a number here.
        return None
    else:
        try:
            numeric = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
    return numeric if math.isfinite(numeric) else None


# ---------------------------------------------------------------------------
# Rule 1: required string
# ---------------------------------------------------------------------------

def parse_required_string(value: Any, label: str = "Name") -> str:
    if not isinstance(value, str):
        raise FieldValidationError(f"{label} is required.", field=label)
    v = trim(value)
    if v is None:
        raise FieldValidationError(f"{label} is required.", field=label)
    return v


# ---------------------------------------------------------------------------
# Rule 2: optional nullable string
# ---------------------------------------------------------------------------

def parse_optional_string(
    value: Any,
    label: str,
    clear_on_empty: bool = True,
) -> Field[str]:
    """Trimmed string; null clears, empty clears unless clear_on_empty=False."""
    if value is MISSING:
        return ABSENT
    if value is None:
        return CLEAR
    if not isinstance(value, str):
        raise FieldValidationError(f"{label} must be a string.", field=label)
    v = trim(value)
    if v is None:
        return CLEAR if clear_on_empty else ABSENT
    return Field.of(v)


# ---------------------------------------------------------------------------
# Rule 3: match status
# ---------------------------------------------------------------------------

_STATUS_ERROR = "Status must be one of the supported values."


def parse_status(value: Any, allow_empty: bool) -> Field[MatchStatus]:
    if value is MISSING or value is None:
        if allow_empty:
            return ABSENT
        raise FieldValidationError(_STATUS_ERROR, field="status")
    if not isinstance(value, str):
        raise FieldValidationError(_STATUS_ERROR, field="status")
    upper = value.strip().upper()
    if not upper:
        if allow_empty:
            return ABSENT
        raise FieldValidationError(_STATUS_ERROR, field="status")
    try:
        return Field.of(MatchStatus(upper))
    except ValueError:
        raise FieldValidationError(_STATUS_ERROR, field="status") from None


# ---------------------------------------------------------------------------
# Rule 4: date / timestamp
# ---------------------------------------------------------------------------

def _parse_iso(value: str) -> datetime | None:
    v = value
    if v.endswith(("Z", "z")):
        v = v[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(v)
    except ValueError:
        return None


def parse_date(value: Any, allow_empty: bool, label: str = "Date") -> Field[datetime]:
    """ISO-8601 string, epoch milliseconds, or datetime → aware UTC datetime.

    Null or blank input is ABSENT when allow_empty, otherwise CLEAR.
    """
    error = f"{label} must be a valid ISO string or timestamp."
    if value is MISSING:
        return ABSENT
    if value is None:
        return ABSENT if allow_empty else CLEAR

    if isinstance(value, str):
        v = value.strip()
        if not v:
            return ABSENT if allow_empty else CLEAR
        parsed = _parse_iso(v)
        if parsed is None:
            raise FieldValidationError(error, field=label)
    elif _is_number(value):
        if not math.isfinite(float(value)):
            raise FieldValidationError(error, field=label)
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise FieldValidationError(error, field=label) from None
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise FieldValidationError(error, field=label)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return Field.of(parsed)


# ---------------------------------------------------------------------------
# Rule 5: bounded integers (minute truncates, rating must be integral)
# ---------------------------------------------------------------------------

def parse_match_minute(value: Any, allow_empty: bool) -> Field[int]:
    if value is MISSING:
        return ABSENT
    if value is None:
        return CLEAR if allow_empty else ABSENT
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return CLEAR if allow_empty else ABSENT
    elif not _is_number(value):
        raise FieldValidationError("Match minute must be a number.", field="matchMinute")

    numeric = _to_number(value)
    if numeric is None:
        raise FieldValidationError("Match minute must be a number.", field="matchMinute")

    # Fractional minutes are truncated toward zero, not rejected.
    integer = math.trunc(numeric)
    if integer < 0:
        raise FieldValidationError(
            "Match minute must be zero or positive.", field="matchMinute"
        )
    return Field.of(integer)


def parse_skill_rating(value: Any, allow_empty: bool) -> Field[int]:
    if value is MISSING:
        return ABSENT
    if value is None:
        return CLEAR
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return ABSENT if allow_empty else CLEAR
    elif not _is_number(value):
        raise FieldValidationError("Skill rating must be a number.", field="skillRating")

    numeric = _to_number(value)
    if numeric is None:
        raise FieldValidationError("Skill rating must be a number.", field="skillRating")

    integer = math.trunc(numeric)
    if integer != numeric:
        raise FieldValidationError("Skill rating must be an integer.", field="skillRating")
    if integer < 0:
        raise FieldValidationError(
            "Skill rating must be zero or positive.", field="skillRating"
        )
    return Field.of(integer)


# ---------------------------------------------------------------------------
# Rule 6: boolean
# ---------------------------------------------------------------------------

_TRUE_STRINGS = frozenset({"true", "1"})
_FALSE_STRINGS = frozenset({"false", "0"})


def parse_optional_boolean(value: Any, label: str = "Boolean field") -> Field[bool]:
    if value is MISSING:
        return ABSENT
    if value is None:
        return CLEAR
    if isinstance(value, bool):
        return Field.of(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if not v:
            return CLEAR
        if v in _TRUE_STRINGS:
            return Field.of(True)
        if v in _FALSE_STRINGS:
            return Field.of(False)
    raise FieldValidationError(f"{label} must be true or false.", field=label)


# ---------------------------------------------------------------------------
# Rule 7: opaque structured blob
# ---------------------------------------------------------------------------

def parse_opaque(value: Any, allow_empty: bool, label: str, shape: str) -> Field[OpaqueBlob]:
    """Pass dict/list values through untouched as an OpaqueBlob.

    ``shape`` is the human description used in the error message, e.g.
    "an object" or "an object or array".
    """
    if value is MISSING:
        return ABSENT
    if value is None:
        return CLEAR
    if not isinstance(value, (dict, list)):
        if allow_empty:
            return ABSENT
        raise FieldValidationError(f"{label} must be {shape}.", field=label)
    try:
        return Field.of(OpaqueBlob.from_value(value))
    except (TypeError, ValueError) as exc:
        raise FieldValidationError(
            f"{label} must be JSON-serializable: {exc}", field=label
        ) from None


# ---------------------------------------------------------------------------
# Rule 8: identifiers
# ---------------------------------------------------------------------------

def parse_id(value: Any, allow_empty: bool, label: str = "Identifier") -> Field[str]:
    if value is MISSING:
        return ABSENT
    if value is None:
        return CLEAR if allow_empty else ABSENT
    if not isinstance(value, str):
        raise FieldValidationError("Identifier must be a string.", field=label)
    v = trim(value)
    if v is None:
        return CLEAR if allow_empty else ABSENT
    return Field.of(v)
