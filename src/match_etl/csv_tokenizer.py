"""match_etl.csv_tokenizer

Minimal CSV reader for player imports.

Supported format (deliberately narrow):
  - UTF-8 text, optional leading BOM
  - comma delimiter, double-quote quoting with "" as an escaped quote
  - LF or CRLF line endings (carriage returns are dropped everywhere)
  - mandatory header row, which must contain a column normalizing to "name"

An unterminated quote or a missing "name" header is fatal and raises
CsvParseError.  Rows with more cells than the header are reported per row
and skipped; short rows are padded with empty strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from match_etl.shared import CsvParseError

_BOM = "\ufeff"
_HEADER_STRIP_RE = re.compile(r"[^a-z0-9]")

UNMATCHED_QUOTE_MESSAGE = "CSV contains unmatched quote characters."
MISSING_NAME_MESSAGE = 'CSV header must include a "name" column.'


class CsvRecord(dict):
    """A header-keyed row that remembers its 1-based row number (header = 1)."""

    def __init__(self, row_number: int, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.row_number = row_number


@dataclass
class CsvParseResult:
    headers: list[str] = field(default_factory=list)
    records: list[CsvRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

def strip_bom(text: str) -> str:
    return text[1:] if text.startswith(_BOM) else text


def split_csv(text: str) -> list[list[str]]:
    """Split CSV text into rows of raw (untrimmed) cells.

    Raises CsvParseError if the input ends inside a quoted field.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    cell: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        i += 1

        if ch == "\r":
            continue

        if in_quotes:
            if ch == '"':
                if i < n and text[i] == '"':
                    cell.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                cell.append(ch)
            continue

        if ch == '"':
            in_quotes = True
        elif ch == ",":
            row.append("".join(cell))
            cell = []
        elif ch == "\n":
            row.append("".join(cell))
            rows.append(row)
            row = []
            cell = []
        else:
            cell.append(ch)

    if in_quotes:
        raise CsvParseError(UNMATCHED_QUOTE_MESSAGE)

    row.append("".join(cell))
    rows.append(row)

    # Trailing newline(s) leave single empty-cell rows behind.
    while rows and rows[-1] == [""]:
        rows.pop()

    return [r for r in rows if r]


def normalize_header(header: str) -> str:
    """'Skill Rating' / 'skill-rating' / 'SKILLRATING' → 'skillrating'."""
    return _HEADER_STRIP_RE.sub("", header.strip().lower())


def _is_blank(row: list[str]) -> bool:
    return all(not cell.strip() for cell in row)


# ---------------------------------------------------------------------------
# Header-driven records
# ---------------------------------------------------------------------------

def parse_csv(text: str) -> CsvParseResult:
    """Tokenize text and map each data row onto the normalized header.

    Row numbers count the header as row 1; blank rows keep their number
    and produce a warning instead of a record.
    """
    rows = split_csv(strip_bom(text))

    header_idx = next((i for i, r in enumerate(rows) if not _is_blank(r)), None)
    if header_idx is None:
        return CsvParseResult()

    headers = [normalize_header(h) for h in rows[header_idx]]
    if "name" not in headers:
        raise CsvParseError(MISSING_NAME_MESSAGE)

    result = CsvParseResult(headers=headers)
    for row_number, row in enumerate(rows[header_idx + 1:], start=2):
        if _is_blank(row):
            result.warnings.append(f"Row {row_number} is blank; skipped.")
            continue
        if len(row) > len(headers):
            result.errors.append(f"Row {row_number} has more columns than the header.")
            continue
        record = CsvRecord(row_number)
        for idx, key in enumerate(headers):
            record[key] = row[idx].strip() if idx < len(row) else ""
        result.records.append(record)

    return result
