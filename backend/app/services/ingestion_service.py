from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Optional

from app.core.logging import LogContext, get_logger
from app.core.utils import record_id
from app.repositories.partition_repo import PartitionWriter
from app.schemas.models import ImportResponse, IncomeRecord, MergeMode
from app.services.layout_detector import LayoutDetector
from app.services.record_normalizer import rows_to_records
from app.services.workbook_reader import WorksheetGrid, fetch_source, read_grid

logger = get_logger("ledger.services.ingestion")


@dataclass
class ImportResult:
    total: int = 0
    hot_saved: int = 0
    cold_saved: int = 0
    months: dict[str, int] = field(default_factory=dict)

    def to_response(self) -> ImportResponse:
        return ImportResponse(
            total=self.total,
            hotSaved=self.hot_saved,
            coldSaved=self.cold_saved,
            months=self.months,
        )


def hot_months(recent_months: Optional[int], today: Optional[date] = None) -> set[str]:
    """Month keys of the current month and the ``recent_months - 1`` before it."""
    if not recent_months or recent_months <= 0:
        return set()
    today = today or date.today()
    year, month = today.year, today.month
    keys: set[str] = set()
    for _ in range(recent_months):
        keys.add(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return keys


def group_by_month(records: Iterable[IncomeRecord]) -> dict[str, list[IncomeRecord]]:
    """Bucket records by month key, dropping records without a date."""
    grouped: dict[str, list[IncomeRecord]] = defaultdict(list)
    for rec in records:
        if not rec.date or not rec.monthKey:
            continue
        grouped[rec.monthKey].append(rec)
    return dict(grouped)


def assign_ids(records: Iterable[IncomeRecord]) -> dict[str, IncomeRecord]:
    """Key records by content id; later duplicates within a batch win.

    Ids already set by the normalizer (hashed over the untruncated
    description) are kept.
    """
    items: dict[str, IncomeRecord] = {}
    for rec in records:
        rid = rec.id or record_id(rec.model_dump())
        items[rid] = rec.model_copy(update={"id": rid})
    return items


class IngestionService:
    """Parses a statement workbook and merges its records into month partitions."""

    def __init__(
        self,
        writer: PartitionWriter,
        detector: Optional[LayoutDetector] = None,
        fetcher: Callable[[str], bytes] = fetch_source,
    ) -> None:
        self.writer = writer
        self.detector = detector or LayoutDetector()
        self.fetcher = fetcher

    def import_from_url(
        self,
        source_url: str,
        recent_months: Optional[int] = None,
        today: Optional[date] = None,
    ) -> ImportResult:
        """Download a statement file and import it.

        Args:
            source_url: Downloadable URL of the XLSX/CSV statement
            recent_months: Size of the "hot" window used for reporting only
            today: Reference date for the hot window (defaults to today)
        """
        content = self.fetcher(source_url)
        grid = read_grid(content, filename=source_url)
        return self.import_grid(grid, recent_months=recent_months, today=today)

    def import_grid(
        self,
        grid: WorksheetGrid,
        recent_months: Optional[int] = None,
        today: Optional[date] = None,
    ) -> ImportResult:
        with LogContext(logger, "statement import", rows=len(grid.rows), sheet=grid.sheet_name):
            layout = self.detector.detect(grid.rows)
            records = rows_to_records(grid.rows, layout.header_row, layout.meta, epoch1904=grid.epoch1904)
            by_month = group_by_month(records)
            hot = hot_months(recent_months, today)

            result = ImportResult()
            for month_key in sorted(by_month):
                items = assign_ids(by_month[month_key])
                self.writer.merge(month_key, items, MergeMode.MERGE)

                count = len(items)
                result.months[month_key] = count
                result.total += count
                if month_key in hot:
                    result.hot_saved += count
                else:
                    result.cold_saved += count

            dropped = len(records) - sum(len(v) for v in by_month.values())
            logger.info(
                f"Imported {result.total} records into {len(by_month)} month(s) "
                f"(hot={result.hot_saved}, cold={result.cold_saved}, undated dropped={dropped})"
            )
            return result
