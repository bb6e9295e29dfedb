"""Shape export records into spreadsheet rows.

Column letters are only the storage/UI convention; everything here works on
0-based integer column indexes (A=0, Z=25, AA=26).
"""
from __future__ import annotations

import json
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping

SKIP = "skip"
MIN_ROW_WIDTH = 26  # A..Z

MONEY_FIELDS = frozenset({"spend", "budget", "spendCap"})
# The manual export also formats cost-per-result columns
REPORT_MONEY_FIELDS = MONEY_FIELDS | {"costPerNewMessagingContact", "costPerMessage"}
DURATION_FIELDS = frozenset({"videoAvgTimeWatched"})

_LETTERS = re.compile(r"^[A-Za-z]+$")
_CENT = Decimal("0.01")
_NUMERIC_PREFIX = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def column_index(letter: str) -> int:
    """Spreadsheet column letter to 0-based index (base-26, 1-indexed digits)."""
    letter = (letter or "").strip()
    if not _LETTERS.match(letter):
        raise ValueError(f"Invalid column letter: {letter!r}")
    column = 0
    for ch in letter.upper():
        column = column * 26 + (ord(ch) - 64)
    return column - 1


def column_letter(index: int) -> str:
    if index < 0:
        raise ValueError(f"Invalid column index: {index}")
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def parse_column_mapping(raw: Any) -> Dict[str, str]:
    """Normalize a stored mapping (dict or JSON text) into ``{field: letter}``.

    Raises ValueError when the mapping is unusable: not an object, a bad
    column letter, or no field mapped to a real column.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Column mapping is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError("Column mapping must be an object")
    mapping: Dict[str, str] = {}
    for field, target in raw.items():
        target = str(target or "").strip()
        if not target:
            continue
        if target.lower() == SKIP:
            mapping[str(field)] = SKIP
            continue
        column_index(target)
        mapping[str(field)] = target.upper()
    if not any(t != SKIP for t in mapping.values()):
        raise ValueError("Column mapping must map at least one field to a column")
    return mapping


def _money(value: Any) -> str:
    # Like parseFloat: the leading numeric part counts, "12abc" -> "12.00"
    m = _NUMERIC_PREFIX.match(str(value))
    if not m:
        return str(value)
    try:
        return str(Decimal(m.group(0)).quantize(_CENT, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return str(value)


def _duration(value: Any) -> str:
    # seconds -> "MM.SS"
    try:
        seconds = float(value) if value not in (None, "") else 0.0
    except (TypeError, ValueError):
        return str(value)
    if seconds == 0 and not value:
        return "-"
    return f"{int(seconds // 60):02d}.{int(seconds % 60):02d}"


def format_cell(
    field: str,
    value: Any,
    money_fields: Iterable[str] = MONEY_FIELDS,
    duration_fields: Iterable[str] = (),
) -> str:
    if field in duration_fields:
        return _duration(value)
    # Numeric zero and other falsy values leave the cell blank; the string "0" does not
    if value is None or value == "" or (not isinstance(value, str) and not value):
        return ""
    if field in money_fields:
        return _money(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def row_width(mapping: Mapping[str, str]) -> int:
    indexes = [column_index(t) for t in mapping.values() if t != SKIP]
    return max(max(indexes, default=0) + 1, MIN_ROW_WIDTH)


def map_to_row(
    record: Mapping[str, Any],
    mapping: Mapping[str, str],
    include_date: bool = False,
    date_string: str = "",
    money_fields: Iterable[str] = MONEY_FIELDS,
    duration_fields: Iterable[str] = (),
) -> List[str]:
    """Place each mapped field of ``record`` at its column; the date wins column A."""
    row = [""] * row_width(mapping)
    for field, target in mapping.items():
        if target == SKIP:
            continue
        idx = column_index(target)
        row[idx] = format_cell(field, record.get(field), money_fields, duration_fields)
    if include_date:
        row[0] = date_string
    return row


def trim_trailing_empty(row: List[str]) -> List[str]:
    end = len(row)
    while end and row[end - 1] == "":
        end -= 1
    return row[:end]


def build_header_row(mapping: Mapping[str, str], include_date: bool = False) -> List[str]:
    """Header for the manual export; kept full width so it lines up with data rows."""
    row = [""] * row_width(mapping)
    for field, target in mapping.items():
        if target != SKIP:
            row[column_index(target)] = field
    if include_date:
        row[0] = "date"
    return row
