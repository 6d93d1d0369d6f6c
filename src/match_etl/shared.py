"""match_etl.shared

Shared utilities used by the validators, the store, and the CLI.
Includes the error taxonomy, RejectWriter, ImportCounters, and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class IngestError(Exception):
    """Base class for every error reported back to the caller."""

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details) if details else []

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = list(self.details)
        return payload


class MalformedInputError(IngestError):
    """Body is not structured data, or the CSV cannot be tokenized."""


class CsvParseError(MalformedInputError):
    """Raised when CSV text fails to tokenize or lacks a required header."""


class FieldValidationError(IngestError):
    """A single field failed its rule."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class BatchValidationError(IngestError):
    """One or more rows of a batch failed validation; details list each row."""


class ReferentialIntegrityError(IngestError):
    """A supplied identity is unknown, foreign-owned, or inconsistent."""


class NotFoundError(IngestError):
    """The addressed primary entity does not exist."""


class StorageError(IngestError):
    """The storage engine failed while executing a statement."""


class AmbiguousMatchError(Exception):
    """Raised when a lookup expected to be unique returns multiple rows."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = ["_row_number"] + list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out: dict[str, Any] = dict(row)
        out["_row_number"] = getattr(row, "row_number", "")
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    @property
    def written(self) -> bool:
        return self._fh is not None

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# ImportCounters
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    rows_read: int = 0
    rows_rejected: int = 0
    players_created: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_rejected": self.rows_rejected,
            "players_created": self.players_created,
            "warnings": self.warnings[:50],
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: ImportCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
