from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from app.core.logging import get_logger
from app.core.utils import month_key_of, record_id, s, to_number, trim_field
from app.schemas.models import DEFAULT_TIME, IncomeRecord, StatementMeta
from app.services.date_normalizer import format_date, format_hms, format_time, normalize_cell, parse_hms

logger = get_logger("ledger.services.records")

DATE_ONLY_KEYWORDS = ("일자", "거래일자", "거래일")


@dataclass(frozen=True)
class ColumnMap:
    """Column index per field; -1 means the statement has no such column."""

    seq: int = -1
    date_time: int = -1
    date_only: int = -1
    time_only: int = -1
    in_amt: int = -1
    out_amt: int = -1
    balance: int = -1
    record: int = -1
    memo: int = -1
    category: int = -1


def resolve_columns(header: Sequence[Any]) -> ColumnMap:
    """Locate each field's column by substring match against the header row."""
    texts = [s(h) for h in header]

    def idx(keyword: str) -> int:
        for i, text in enumerate(texts):
            if keyword in text:
                return i
        return -1

    date_only = -1
    for keyword in DATE_ONLY_KEYWORDS:
        date_only = idx(keyword)
        if date_only >= 0:
            break

    return ColumnMap(
        seq=idx("순번"),
        date_time=idx("거래일시"),
        date_only=date_only,
        time_only=idx("시간"),
        in_amt=idx("입금금액"),
        out_amt=idx("출금금액"),
        balance=idx("거래후잔액"),
        record=idx("거래기록사항"),
        memo=idx("거래메모"),
        category=idx("구분"),
    )


def transaction_type(in_amt: float, out_amt: float) -> str:
    if in_amt > 0:
        return "deposit"
    if out_amt > 0:
        return "withdrawal"
    return ""


def rows_to_records(
    rows: Sequence[Sequence[Any]],
    header_row: int,
    meta: StatementMeta,
    epoch1904: bool = False,
) -> list[IncomeRecord]:
    """Map every non-blank row below the header to a canonical record.

    Rows without a resolvable date are still returned (with ``date == ""``);
    the ingestion service drops them before partitioning.
    """
    columns = resolve_columns(rows[header_row] if header_row < len(rows) else [])

    def cell(row: Sequence[Any], col: int) -> Any:
        if col < 0 or col >= len(row):
            return None
        return row[col]

    records: list[IncomeRecord] = []
    undated = 0
    for r in range(header_row + 1, len(rows)):
        row = rows[r] or ()
        if not any(s(c) for c in row):
            continue

        date_str = ""
        time_str = ""

        if columns.date_time >= 0:
            parsed = normalize_cell(cell(row, columns.date_time), truncate_time=False, epoch1904=epoch1904)
            if parsed is not None:
                date_str = format_date(parsed)
                time_str = format_time(parsed)

        if not date_str and columns.date_only >= 0:
            parsed = normalize_cell(cell(row, columns.date_only), truncate_time=True, epoch1904=epoch1904)
            if parsed is not None:
                date_str = format_date(parsed)
            if columns.time_only >= 0:
                time_str = format_hms(parse_hms(cell(row, columns.time_only)))
            if date_str and not time_str:
                time_str = DEFAULT_TIME

        time_str = time_str or DEFAULT_TIME
        if not date_str:
            undated += 1

        in_amt = to_number(cell(row, columns.in_amt)) if columns.in_amt >= 0 else 0
        out_amt = to_number(cell(row, columns.out_amt)) if columns.out_amt >= 0 else 0
        record_text = s(cell(row, columns.record))
        # The id covers the full description; only the stored copy is cut to MAX_TEXT
        rid = record_id({"date": date_str, "time": time_str, "inAmt": in_amt, "record": record_text}) if date_str else ""

        records.append(
            IncomeRecord(
                id=rid,
                date=date_str,
                time=time_str,
                datetime=f"{date_str} {time_str}" if date_str else "",
                accountNo=s(meta.accountNo),
                holder=s(meta.holder),
                category=trim_field(cell(row, columns.category)),
                inAmt=in_amt,
                outAmt=out_amt,
                balance=to_number(cell(row, columns.balance)) if columns.balance >= 0 else 0,
                record=trim_field(record_text),
                memo=trim_field(cell(row, columns.memo)),
                seq=s(cell(row, columns.seq)),
                type=transaction_type(in_amt, out_amt),
                unconfirmed=False,
                monthKey=month_key_of(date_str),
            )
        )

    if undated:
        logger.warning(f"{undated} row(s) had no parseable date and will not be stored")
    return records
