"""Structured (JSON) and tabular (CSV) encodings of the marker collection."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import jsonschema
from jsonschema.exceptions import ValidationError as SchemaValidationError

from .errors import ParseError, ValidationError
from .marker_record import (
    FIELDS,
    LEGACY_ALIASES,
    UNKNOWN_REGION,
    Marker,
    coerce_rank,
    is_finite_number,
    new_id,
    now_timestamp,
)

log = logging.getLogger(__name__)

STRUCTURED = "structured"
TABULAR = "tabular"
FORMATS = (STRUCTURED, TABULAR)

EXTENSIONS = {STRUCTURED: "json", TABULAR: "csv"}
MIME_TYPES = {STRUCTURED: "application/json", TABULAR: "text/csv"}

SCHEMA_FILE = Path(__file__).resolve().parents[1] / "schemas" / "schema.targets.json"

DELIMITER = ","
QUOTE = '"'
_NEEDS_QUOTING = (DELIMITER, QUOTE, "\r", "\n")

# Scanner states for the tabular decoder.
UNQUOTED = "unquoted"
QUOTED = "quoted"


@dataclass
class DecodeResult:
    markers: List[Marker] = field(default_factory=list)
    total: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.total - len(self.markers)

    def summary(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "decoded": len(self.markers),
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


# ----------------------- format helpers -----------------------
def format_from_filename(filename: str) -> str:
    suffix = Path(filename).suffix.lower()
    if suffix == ".json":
        return STRUCTURED
    if suffix == ".csv":
        return TABULAR
    raise ValueError(f"Unsupported import file type: {filename}")


def export_filename(fmt: str, today: Optional[date] = None) -> str:
    _check_format(fmt)
    stamp = (today or date.today()).isoformat()
    return f"gps-targets-{stamp}.{EXTENSIONS[fmt]}"


def _check_format(fmt: str):
    if fmt not in FORMATS:
        raise ValueError(f"Unknown format: {fmt}")


def encode(markers: Iterable[Marker], fmt: str) -> str:
    _check_format(fmt)
    if fmt == STRUCTURED:
        return encode_structured(markers)
    return encode_tabular(markers)


def decode(text: str, fmt: str) -> DecodeResult:
    _check_format(fmt)
    if fmt == STRUCTURED:
        return decode_structured(text)
    return decode_tabular(text)


# ----------------------- structured -----------------------
@lru_cache(maxsize=1)
def _entry_schema() -> Dict[str, Any]:
    with open(SCHEMA_FILE, "r", encoding="utf-8") as handle:
        return json.load(handle)


def encode_structured(markers: Iterable[Marker]) -> str:
    return json.dumps([marker.to_dict() for marker in markers], indent=2, ensure_ascii=False)


def decode_structured(text: str) -> DecodeResult:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        log.warning("Structured payload is not valid JSON: %s", exc)
        return DecodeResult(errors=[f"payload:{exc}"])
    if not isinstance(payload, list):
        return DecodeResult(errors=["payload:top-level value is not a list"])

    result = DecodeResult(total=len(payload))
    for idx, entry in enumerate(payload):
        try:
            result.markers.append(_entry_to_marker(entry))
        except (ParseError, ValidationError) as err:
            log.debug("Skipping structured entry %d: %s", idx, err)
            result.errors.append(f"{idx}:{err}")
    return result


def _entry_to_marker(entry: Any) -> Marker:
    if not isinstance(entry, dict):
        raise ParseError("entry is not an object")
    record = _apply_aliases(entry)
    try:
        jsonschema.validate(record, _entry_schema())
    except SchemaValidationError as err:
        raise ParseError(err.message) from err
    return Marker(
        id=record.get("id") or new_id(),
        lat=float(record["lat"]),
        lng=float(record["lng"]),
        captured_at=record.get("capturedAt") or now_timestamp(),
        name=record.get("name"),
        note=record.get("note") or "",
        rank=coerce_rank(record.get("rank", 1)),
        region=record.get("region") or UNKNOWN_REGION,
    )


def _apply_aliases(record: Dict[str, Any]) -> Dict[str, Any]:
    output = dict(record)
    for legacy, current in LEGACY_ALIASES.items():
        if legacy in output and current not in output:
            output[current] = output.pop(legacy)
    return output


# ----------------------- tabular -----------------------
def encode_tabular(markers: Iterable[Marker]) -> str:
    lines = [DELIMITER.join(FIELDS)]
    for marker in markers:
        record = marker.to_dict()
        lines.append(DELIMITER.join(_encode_cell(record[name]) for name in FIELDS))
    return "\n".join(lines)


def _encode_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return repr(value)
    text = str(value)
    if any(char in text for char in _NEEDS_QUOTING):
        return QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE
    return text


def scan_rows(text: str) -> Iterator[Tuple[List[str], bool]]:
    """Yield ``(cells, complete)`` for every physical record in ``text``.

    The scanner is a two-state machine. Inside ``QUOTED`` a delimiter or line
    break is literal data and ``""`` is an escaped quote. A quote still open
    at the end of input poisons only the line that opened it: that line is
    yielded with ``complete`` False and scanning resumes on the next line.
    """

    state = UNQUOTED
    cells: List[str] = []
    chars: List[str] = []
    record_start = 0
    index = 0
    length = len(text)
    while True:
        if index >= length:
            if state == UNQUOTED:
                break
            line_end = _line_end(text, record_start)
            yield [text[record_start:line_end]], False
            state = UNQUOTED
            cells = []
            chars = []
            index = record_start = _next_line(text, line_end)
            continue
        char = text[index]
        if state == QUOTED:
            if char == QUOTE:
                if index + 1 < length and text[index + 1] == QUOTE:
                    chars.append(QUOTE)
                    index += 1
                else:
                    state = UNQUOTED
            else:
                chars.append(char)
        elif char == QUOTE:
            state = QUOTED
        elif char == DELIMITER:
            cells.append("".join(chars))
            chars = []
        elif char in "\r\n":
            if char == "\r" and index + 1 < length and text[index + 1] == "\n":
                index += 1
            cells.append("".join(chars))
            chars = []
            yield cells, True
            cells = []
            record_start = index + 1
        else:
            chars.append(char)
        index += 1
    if chars or cells:
        cells.append("".join(chars))
        yield cells, True


def _line_end(text: str, start: int) -> int:
    for position in range(start, len(text)):
        if text[position] in "\r\n":
            return position
    return len(text)


def _next_line(text: str, line_end: int) -> int:
    if text.startswith("\r\n", line_end):
        return line_end + 2
    return min(line_end + 1, len(text))


def _is_blank(cells: Sequence[str]) -> bool:
    return all(not cell.strip() for cell in cells)


def decode_tabular(text: str) -> DecodeResult:
    rows = ((cells, complete) for cells, complete in scan_rows(text or "") if not _is_blank(cells))
    header_row = next(rows, None)
    if header_row is None:
        return DecodeResult()
    header = [LEGACY_ALIASES.get(name.strip(), name.strip()) for name in header_row[0]]

    result = DecodeResult()
    for idx, (cells, complete) in enumerate(rows, start=1):
        result.total += 1
        try:
            if not complete:
                raise ParseError("unterminated quoted field")
            result.markers.append(_row_to_marker(header, cells))
        except (ParseError, ValidationError) as err:
            log.debug("Skipping tabular row %d: %s", idx, err)
            result.errors.append(f"{idx}:{err}")
    return result


def _row_to_marker(header: Sequence[str], cells: Sequence[str]) -> Marker:
    record: Dict[str, str] = {}
    for position, column in enumerate(header):
        if position < len(cells):
            record[column] = cells[position]
    return Marker(
        id=record.get("id", "").strip() or new_id(),
        lat=_parse_coordinate(record, "lat"),
        lng=_parse_coordinate(record, "lng"),
        captured_at=record.get("capturedAt") or now_timestamp(),
        name=record.get("name") or None,
        note=record.get("note") or "",
        rank=coerce_rank(record.get("rank")),
        region=record.get("region") or UNKNOWN_REGION,
    )


def _parse_coordinate(record: Dict[str, str], column: str) -> float:
    raw = (record.get(column) or "").strip()
    if not raw:
        raise ValidationError(f"missing {column}")
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"{column} is not a number: {raw!r}") from exc
    if not is_finite_number(value):
        raise ValidationError(f"{column} is not finite: {raw!r}")
    return value
