"""
Layout detection for bank statement worksheets.

Statement exports carry a preamble (account number, holder, period) above a
header row whose column order differs between banks. Both are located by
substring search over the top of the grid.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from app.core.exceptions import HeaderNotFoundError
from app.core.logging import get_logger
from app.core.utils import s
from app.schemas.models import StatementMeta

logger = get_logger("ledger.services.layout")

Grid = Sequence[Sequence[Any]]

HEADER_SCAN_ROWS = 50
META_SCAN_ROWS = 30
META_SEARCH_RADIUS = 8

DATETIME_KEYWORD = "거래일시"
DATE_KEYWORDS = ("일자", "거래일", "거래일자")
DEPOSIT_KEYWORD = "입금금액"
ACCOUNT_NO_KEYWORD = "계좌번호"
HOLDER_KEYWORD = "예금주명"


def _raw(rows: Grid, r: int, c: int) -> Any:
    if r < 0 or c < 0 or r >= len(rows):
        return None
    row = rows[r] or ()
    if c >= len(row):
        return None
    return row[c]


def _cell(rows: Grid, r: int, c: int) -> str:
    return s(_raw(rows, r, c))


def find_header_row(rows: Grid) -> int:
    """Return the index of the first header row within the scan window, or -1."""
    for i in range(min(len(rows), HEADER_SCAN_ROWS)):
        texts = [s(c) for c in (rows[i] or ())]
        has_datetime = any(DATETIME_KEYWORD in t for t in texts)
        has_date = any(k in t for t in texts for k in DATE_KEYWORDS)
        has_deposit = any(DEPOSIT_KEYWORD in t for t in texts)
        if (has_datetime or has_date) and has_deposit:
            return i
    return -1


def find_following_value(rows: Grid, r0: int, c0: int, max_radius: int = META_SEARCH_RADIUS) -> str:
    """Find the value belonging to the label at (r0, c0).

    Searches right along the row, then down the next (or same) column, then
    the box below and to the right of the label.
    """
    for c in range(c0 + 1, c0 + max_radius + 1):
        value = _cell(rows, r0, c)
        if value:
            return value
    for r in range(r0 + 1, r0 + max_radius + 1):
        # The label's own column is used only when the next column has no cell
        raw = _raw(rows, r, c0 + 1)
        value = s(raw if raw is not None else _raw(rows, r, c0))
        if value:
            return value
    for dr in range(max_radius + 1):
        for dc in range(max_radius + 1):
            if dr == 0 and dc == 0:
                continue
            value = _cell(rows, r0 + dr, c0 + dc)
            if value:
                return value
    return ""


def parse_meta(rows: Grid) -> StatementMeta:
    """Read account number and holder name from the statement preamble."""
    meta = StatementMeta()
    for i in range(min(len(rows), META_SCAN_ROWS)):
        row = rows[i] or ()
        for j in range(len(row)):
            text = s(row[j])
            if not text:
                continue
            if ACCOUNT_NO_KEYWORD in text:
                meta.accountNo = _cell(rows, i, j + 1) or find_following_value(rows, i, j)
            if HOLDER_KEYWORD in text:
                meta.holder = _cell(rows, i, j + 1) or find_following_value(rows, i, j)
    return meta


@dataclass(frozen=True)
class Layout:
    header_row: int
    meta: StatementMeta


class LayoutDetector:
    """Keyword-based header and preamble detection.

    Subclass and override ``find_header_row``/``parse_meta`` to plug in a
    different detection strategy; the record normalizer only sees ``Layout``.
    """

    def find_header_row(self, rows: Grid) -> int:
        return find_header_row(rows)

    def parse_meta(self, rows: Grid) -> StatementMeta:
        return parse_meta(rows)

    def detect(self, rows: Grid) -> Layout:
        header_row = self.find_header_row(rows)
        if header_row < 0:
            raise HeaderNotFoundError(
                "Header row (일자/거래일시/입금금액) not found",
                details={"rows_scanned": min(len(rows), HEADER_SCAN_ROWS)},
            )
        meta = self.parse_meta(rows)
        if not meta.accountNo and not meta.holder:
            logger.info("No account number or holder found in statement preamble")
        logger.debug(f"Detected header at row {header_row}, account={meta.accountNo!r}")
        return Layout(header_row=header_row, meta=meta)
