"""match_etl.cli

Unified CLI entrypoint for match, team, player and event operations.

Modes (--mode):
  player_import        — create players from a CSV file (all or nothing)
  player_csv_validate  — tokenize and validate a player CSV; no database
  player_create / player_update / player_delete / player_show
  match_create / match_update / match_delete / match_show
  team_assign          — assign --player-id to --team-id
  event_create         — record an event on --match-id
  match_timeline       — list a match's events with team/player summaries

Request bodies are read from --payload-path: YAML when the file ends in
.yaml or .yml, JSON otherwise.

Usage (player_import):
    python -m match_etl.cli \\
        --mode player_import \\
        --db-dsn "$DB_DSN" \\
        --csv-path "players.csv" \\
        --rejects-path "artifacts/rejects/player_import_rejects.csv"

Usage (match_update):
    python -m match_etl.cli \\
        --mode match_update \\
        --db-dsn "$DB_DSN" \\
        --match-id "m-123" \\
        --payload-path "match_update.json"
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
import psycopg
import yaml

from match_etl import services
from match_etl.shared import (
    ImportCounters,
    IngestError,
    MalformedInputError,
    RejectWriter,
    write_run_report,
)
from match_etl.store import PgMatchStore

INVALID_BODY = "Invalid JSON body."

# Flags each mode needs besides --db-dsn.
_MODE_FLAGS: dict[str, tuple[str, ...]] = {
    "player_import": ("csv_path",),
    "player_csv_validate": ("csv_path",),
    "player_create": ("payload_path",),
    "player_update": ("player_id", "payload_path"),
    "player_delete": ("player_id",),
    "player_show": ("player_id",),
    "match_create": ("payload_path",),
    "match_update": ("match_id", "payload_path"),
    "match_delete": ("match_id",),
    "match_show": ("match_id",),
    "team_assign": ("team_id", "player_id"),
    "event_create": ("match_id", "payload_path"),
    "match_timeline": ("match_id",),
}

_NO_DB_MODES = frozenset({"player_csv_validate"})


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def read_input(path: Path, message: str) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedInputError(message, [str(exc)]) from None


def load_payload(path: Path) -> Any:
    """Read a request body: YAML for .yaml/.yml files, JSON otherwise."""
    text = read_input(path, INVALID_BODY)
    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise MalformedInputError(INVALID_BODY, [str(exc)]) from None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(INVALID_BODY, [str(exc)]) from None


def _validate_mode_flags(mode: str, flags: dict[str, Any], run_id: str) -> None:
    missing = [name for name in _MODE_FLAGS[mode] if not flags.get(name)]
    if mode not in _NO_DB_MODES and not flags.get("db_dsn"):
        missing.insert(0, "db_dsn")
    if missing:
        click.echo(
            f"[{run_id}] FATAL: {mode} mode requires: "
            + ", ".join("--" + m.replace("_", "-") for m in missing),
            err=True,
        )
        sys.exit(1)
    for name in ("csv_path", "payload_path"):
        path = flags.get(name)
        if name in _MODE_FLAGS[mode] and not Path(path).exists():
            click.echo(
                f"[{run_id}] FATAL: --{name.replace('_', '-')} not found: {path}",
                err=True,
            )
            sys.exit(1)


def _emit(result: Any) -> None:
    if result is None:
        return
    if isinstance(result, list):
        data = [item.to_dict() for item in result]
    else:
        data = result.to_dict()
    click.echo(json.dumps(data, indent=2, default=str))


def _fail(run_id: str, exc: IngestError) -> None:
    click.echo(f"[{run_id}] {type(exc).__name__}: {exc.message}", err=True)
    click.echo(json.dumps(exc.to_payload(), indent=2), err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Operation dispatch
# ---------------------------------------------------------------------------

def _operation(
    mode: str,
    store: PgMatchStore,
    *,
    payload: Any,
    csv_text: str | None,
    match_id: str | None,
    player_id: str | None,
    team_id: str | None,
    counters: ImportCounters,
    rejects: RejectWriter,
) -> Callable[[], Any]:
    ops: dict[str, Callable[[], Any]] = {
        "player_import": lambda: services.import_players_csv(
            store, csv_text, counters=counters, rejects=rejects
        ),
        "player_create": lambda: services.create_player(store, payload),
        "player_update": lambda: services.update_player(store, player_id, payload),
        "player_delete": lambda: services.delete_player(store, player_id),
        "player_show": lambda: services.get_player(store, player_id),
        "match_create": lambda: services.create_match(store, payload),
        "match_update": lambda: services.update_match(store, match_id, payload),
        "match_delete": lambda: services.delete_match(store, match_id),
        "match_show": lambda: services.get_match(store, match_id),
        "team_assign": lambda: services.assign_player(store, team_id, player_id),
        "event_create": lambda: services.create_event(store, match_id, payload),
        "match_timeline": lambda: services.match_timeline(store, match_id),
    }
    return ops[mode]


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice(list(_MODE_FLAGS)),
    help="Operation to run",
)
@click.option("--db-dsn", envvar="DB_DSN", default=None, help="PostgreSQL DSN (or $DB_DSN)")
@click.option("--csv-path", default=None, type=click.Path(), help="[player_import|player_csv_validate] Input CSV")
@click.option("--payload-path", default=None, type=click.Path(), help="Request body, JSON or YAML")
@click.option("--match-id", default=None)
@click.option("--player-id", default=None)
@click.option("--team-id", default=None)
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="artifacts/rejects/player_import_rejects.csv",
    show_default=True,
    type=click.Path(),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    mode: str,
    db_dsn: str | None,
    csv_path: str | None,
    payload_path: str | None,
    match_id: str | None,
    player_id: str | None,
    team_id: str | None,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Unified match data CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    _validate_mode_flags(
        mode,
        {
            "db_dsn": db_dsn,
            "csv_path": csv_path,
            "payload_path": payload_path,
            "match_id": match_id,
            "player_id": player_id,
            "team_id": team_id,
        },
        run_id,
    )

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})", err=True)

    csv_text = None
    if csv_path and "csv_path" in _MODE_FLAGS[mode]:
        try:
            csv_text = read_input(Path(csv_path), services.CSV_PARSE_FAILED)
        except IngestError as exc:
            _fail(run_id, exc)

    if mode == "player_csv_validate":
        # Pure CSV parsing; no DB connection needed.
        try:
            batch = services.validate_players_csv(csv_text)  # type: ignore[arg-type]
        except IngestError as exc:
            _fail(run_id, exc)
        click.echo(json.dumps({"valid": len(batch.values), "errors": batch.errors}, indent=2))
        if not batch.ok:
            sys.exit(1)
        return

    payload = None
    if payload_path and "payload_path" in _MODE_FLAGS[mode]:
        try:
            payload = load_payload(Path(payload_path))
        except IngestError as exc:
            _fail(run_id, exc)

    counters = ImportCounters()
    rejects = RejectWriter(Path(rejects_path))
    failure: IngestError | None = None

    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        store = PgMatchStore(conn)
        op = _operation(
            mode, store,
            payload=payload, csv_text=csv_text,
            match_id=match_id, player_id=player_id, team_id=team_id,
            counters=counters, rejects=rejects,
        )
        try:
            with conn.transaction(force_rollback=dry_run):
                result = op()
        except IngestError as exc:
            failure = exc
        else:
            _emit(result)
            if dry_run:
                click.echo(f"[{run_id}] DRY RUN: rolled back.", err=True)
            else:
                click.echo(f"[{run_id}] Committed.", err=True)
    finally:
        rejects.close()
        conn.close()

    if mode == "player_import":
        report_path = write_run_report(
            run_id, started_at, mode, dry_run,
            {"csv_path": csv_path, "rejects_path": rejects_path if rejects.written else None},
            counters,
        )
        click.echo(f"[{run_id}] Run report: {report_path}", err=True)

    if failure is not None:
        _fail(run_id, failure)


if __name__ == "__main__":
    main()
