"""
Core utilities for the income ledger backend.
"""

from __future__ import annotations

import math
import re
from typing import Any

MAX_TEXT = 2000

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_MONTH_KEY = re.compile(r"^\d{4}-\d{2}$")

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619


def s(value: Any) -> str:
    """Stringify a cell or field value, mapping None to an empty string."""
    if value is None:
        return ""
    return str(value).strip()


def to_number(value: Any) -> int | float:
    """Coerce a cell to a number, stripping currency symbols and separators.

    Anything that does not parse becomes 0. Integral values come back as int
    so amounts serialize as ``50000`` rather than ``50000.0``.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = _NON_NUMERIC.sub("", str(value))
        if not cleaned:
            return 0
        try:
            number = float(cleaned)
        except ValueError:
            return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


def trim_field(value: Any, max_length: int = MAX_TEXT) -> str:
    return s(value)[:max_length]


def month_key_of(date_str: str | None) -> str:
    """Return the YYYY-MM partition key of a YYYY-MM-DD date, or ''."""
    return s(date_str)[:7] if date_str else ""


def is_month_key(value: str | None) -> bool:
    return bool(value) and bool(_MONTH_KEY.match(value))


def js_number(value: int | float) -> str:
    """Render a number the way the statement exports always have: 50000, 1.5."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a over the UTF-16 code units of ``text``."""
    h = FNV_OFFSET_BASIS
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        h ^= encoded[i] | (encoded[i + 1] << 8)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def dup_key(record: dict[str, Any]) -> str:
    """Build the deduplication key ``date|time|inAmt|record``."""
    return "|".join(
        [
            s(record.get("date")),
            s(record.get("time")) or "00:00:00",
            js_number(to_number(record.get("inAmt"))),
            s(record.get("record")),
        ]
    )


def record_id(record: dict[str, Any]) -> str:
    """Generate the content-derived id for a transaction.

    Identical (date, time, inAmt, record) tuples collapse to the same id across
    imports, which makes partition merges idempotent. Two distinct transactions
    sharing all four fields collide; the id is not a true primary key.

    Args:
        record: Transaction dict (canonical field names)

    Returns:
        ``"r_"`` followed by the lowercase hex FNV-1a hash
    """
    return f"r_{fnv1a_32(dup_key(record)):x}"
