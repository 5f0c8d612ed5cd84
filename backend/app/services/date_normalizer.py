"""
Date/time normalization for statement cells.

Bank exports put transaction dates in one of three shapes: a native date
cell, a spreadsheet serial day number, or locale text such as
``2024.05.03 14:20``. ``normalize_cell`` accepts all three and returns a naive
``datetime`` (wall-clock time as printed on the statement) or ``None``.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any

EXCEL_EPS = 1e-7
MS_PER_DAY = 24 * 60 * 60 * 1000

# Serial 0 in the 1900 system is 1899-12-30 (Lotus leap-year bug folded in)
EPOCH_1900 = datetime(1899, 12, 30)
EPOCH_1904 = datetime(1904, 1, 1)

_SEPARATORS = re.compile(r"[.\-]")
_WHITESPACE = re.compile(r"\s+")
_TEXT_DATETIME = re.compile(
    r"^(\d{4})/(\d{1,2})/(\d{1,2})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_HMS = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def _truncate(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def serial_to_datetime(
    serial: float,
    truncate_time: bool = False,
    epoch1904: bool = False,
) -> datetime | None:
    """Convert a spreadsheet serial day count to a datetime.

    Values within ``EXCEL_EPS`` of an integer snap to it, which absorbs the
    floating-point noise exports leave on whole dates.
    """
    if isinstance(serial, bool) or not isinstance(serial, (int, float)):
        return None
    if not math.isfinite(serial):
        return None

    value = float(serial)
    if abs(value - round(value)) < EXCEL_EPS:
        value = float(round(value))
    if truncate_time:
        value = float(math.floor(value + EXCEL_EPS))

    base = EPOCH_1904 if epoch1904 else EPOCH_1900
    try:
        result = base + timedelta(milliseconds=math.floor(value * MS_PER_DAY))
    except OverflowError:
        return None
    result = result.replace(microsecond=0)
    return _truncate(result) if truncate_time else result


def parse_text_datetime(value: Any) -> datetime | None:
    """Parse ``YYYY/M/D[ h:mm[:ss]]`` with ``.`` or ``-`` accepted as separators.

    Out-of-range fields roll over into the next unit, so ``2024/2/30`` is
    2024-03-01 and ``2024/5/3 24:00:00`` is 2024-05-04 00:00:00.
    """
    raw = "" if value is None else str(value).strip()
    if not raw:
        return None
    norm = _WHITESPACE.sub(" ", _SEPARATORS.sub("/", raw)).strip()
    match = _TEXT_DATETIME.match(norm)
    if not match:
        return None
    year, month, day, hh, mm, ss = (int(g or 0) for g in match.groups())
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    try:
        return datetime(year, month, 1) + timedelta(days=day - 1, hours=hh, minutes=mm, seconds=ss)
    except (ValueError, OverflowError):
        return None


def normalize_cell(
    cell: Any,
    truncate_time: bool = False,
    epoch1904: bool = False,
) -> datetime | None:
    """Normalize one raw cell into a datetime.

    Args:
        cell: Native date/datetime, serial number, or text
        truncate_time: Zero the time-of-day component
        epoch1904: The workbook uses the 1904 date system

    Returns:
        Naive datetime, or None when the cell holds no recognisable date.
        None is never fatal; callers fall back to another column.
    """
    if cell is None or cell == "":
        return None

    if isinstance(cell, datetime):
        result = cell.replace(tzinfo=None)
        return _truncate(result) if truncate_time else result
    if isinstance(cell, date):
        return datetime(cell.year, cell.month, cell.day)

    if isinstance(cell, (int, float)) and not isinstance(cell, bool):
        return serial_to_datetime(cell, truncate_time=truncate_time, epoch1904=epoch1904)

    result = parse_text_datetime(cell)
    if result is None:
        return None
    return _truncate(result) if truncate_time else result


def format_date(value: datetime | None) -> str:
    if value is None:
        return ""
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def format_time(value: datetime | None) -> str:
    if value is None:
        return ""
    return f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}"


def parse_hms(value: Any) -> tuple[int, int, int]:
    """Parse a separate ``h:mm[:ss]`` time cell; malformed input gives midnight."""
    if isinstance(value, datetime):
        return value.hour, value.minute, value.second
    if hasattr(value, "hour") and hasattr(value, "minute"):
        return value.hour, value.minute, getattr(value, "second", 0)
    match = _HMS.match("" if value is None else str(value).strip())
    if not match:
        return 0, 0, 0
    hh, mm, ss = match.groups()
    return int(hh), int(mm), int(ss or 0)


def format_hms(parts: tuple[int, int, int]) -> str:
    hh, mm, ss = parts
    return f"{hh:02d}:{mm:02d}:{ss:02d}"
