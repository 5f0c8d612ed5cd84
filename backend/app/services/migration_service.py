"""
Month-partition backfill from the Firestore income collection.

The job pages through the source collection in document-id order, buckets
records per month in memory and flushes the buckets through the partition
writer whenever the buffer crosses a threshold. It is resumable: the result
carries the last processed document id, which can be passed back as
``start_after`` on the next invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from app.core.config import MIGRATION_FLUSH_THRESHOLD, MIGRATION_PAGE_SIZE
from app.core.exceptions import IncomeLedgerError, SourceReadError, ValidationError
from app.core.logging import LogContext, get_logger
from app.core.utils import is_month_key, month_key_of, s, to_number, trim_field
from app.repositories.partition_repo import PartitionWriter
from app.schemas.models import (
    DEFAULT_TIME,
    LEGACY_TYPE_LABELS,
    TRANSACTION_TYPES,
    IncomeRecord,
    MergeMode,
    MigrateResponse,
)
from app.services.record_normalizer import transaction_type

logger = get_logger("ledger.services.migration")


class IncomeSource(Protocol):
    def fetch_page(self, start_after: Optional[str], limit: int) -> list[tuple[str, dict[str, Any]]]: ...


@dataclass
class MigrationCursor:
    """In-memory state of one migration run. Never persisted."""

    last_doc_id: str = ""
    committed_doc_id: str = ""
    buffers: dict[str, dict[str, IncomeRecord]] = field(default_factory=dict)
    flushed_months: set[str] = field(default_factory=set)
    failed_months: set[str] = field(default_factory=set)
    migrated: int = 0
    loops: int = 0

    def buffered(self) -> int:
        return sum(len(items) for items in self.buffers.values())


@dataclass
class MigrationResult:
    migrated: int
    last_doc_id: str
    loops: int
    dry_run: bool
    from_month: str
    to_month: str
    failed_months: list[str] = field(default_factory=list)

    def to_response(self) -> MigrateResponse:
        return MigrateResponse(
            migrated=self.migrated,
            lastDocId=self.last_doc_id,
            loops=self.loops,
            dryRun=self.dry_run,
            fromMonth=self.from_month,
            toMonth=self.to_month,
            failedMonths=self.failed_months,
        )


def record_from_document(doc_id: str, data: dict[str, Any]) -> Optional[IncomeRecord]:
    """Normalize one source document; None when it lacks id, date or month."""
    rid = s(data.get("_id") or doc_id)
    date_str = s(data.get("date"))
    time_str = s(data.get("time")) or DEFAULT_TIME
    month_key = s(data.get("monthKey")) or month_key_of(date_str)
    if not rid or not date_str or not month_key:
        return None

    derived = month_key_of(date_str)
    if is_month_key(derived) and derived != month_key:
        logger.warning(f"Document {doc_id}: monthKey {month_key} disagrees with date {date_str}, using {derived}")
        month_key = derived
    if not is_month_key(month_key):
        return None

    in_amt = to_number(data.get("inAmt"))
    out_amt = to_number(data.get("outAmt"))
    raw_type = s(data.get("type"))
    tx_type = LEGACY_TYPE_LABELS.get(raw_type, raw_type)
    if tx_type not in TRANSACTION_TYPES:
        tx_type = transaction_type(in_amt, out_amt)

    try:
        return IncomeRecord(
            id=rid,
            date=date_str,
            time=time_str,
            datetime=s(data.get("datetime")) or f"{date_str} {time_str}",
            accountNo=s(data.get("accountNo")),
            holder=s(data.get("holder")),
            category=trim_field(data.get("category")),
            inAmt=in_amt,
            outAmt=out_amt,
            balance=to_number(data.get("balance")),
            record=trim_field(data.get("record")),
            memo=trim_field(data.get("memo")),
            seq=s(data.get("_seq")),
            type=tx_type,
            unconfirmed=bool(data.get("unconfirmed")),
            monthKey=month_key,
        )
    except PydanticValidationError as e:
        logger.warning(f"Skipping document {doc_id}: {e}")
        return None


class MigrationService:
    """Rebuilds month partitions from the source collection."""

    def __init__(
        self,
        source: IncomeSource,
        writer: PartitionWriter,
        page_size: int = MIGRATION_PAGE_SIZE,
        flush_threshold: int = MIGRATION_FLUSH_THRESHOLD,
    ) -> None:
        if page_size <= 0 or flush_threshold <= 0:
            raise ValidationError("page_size and flush_threshold must be positive")
        self.source = source
        self.writer = writer
        self.page_size = page_size
        self.flush_threshold = flush_threshold

    def run(
        self,
        from_month: Optional[str] = None,
        to_month: Optional[str] = None,
        dry_run: bool = False,
        rewrite_once: bool = False,
        start_after: Optional[str] = None,
    ) -> MigrationResult:
        """
        Run one migration pass over the source collection.

        Args:
            from_month: Inclusive lower month bound (YYYY-MM)
            to_month: Inclusive upper month bound (YYYY-MM)
            dry_run: Count records without writing partitions
            rewrite_once: First flush of each month replaces the partition
            start_after: Resume after this document id

        Returns:
            MigrationResult with the migrated count and resume cursor. The
            cursor stops before any record still buffered for a failed
            month, so resuming from it re-reads those records.

        Raises:
            SourceReadError: A page could not be read. Buffered records are
                flushed first and the error carries the resume cursor.
        """
        from_month = s(from_month)
        to_month = s(to_month)
        # Bounds apply only when both ends are well-formed
        use_month_filter = is_month_key(from_month) and is_month_key(to_month)
        cursor = MigrationCursor(last_doc_id=s(start_after), committed_doc_id=s(start_after))

        with LogContext(
            logger,
            "income migration",
            from_month=from_month or "-",
            to_month=to_month or "-",
            dry_run=dry_run,
            rewrite=rewrite_once,
            start_after=cursor.last_doc_id or "-",
        ):
            while True:
                cursor.loops += 1
                try:
                    page = self.source.fetch_page(cursor.last_doc_id or None, self.page_size)
                except Exception as e:
                    self._flush(cursor, dry_run, rewrite_once)
                    raise SourceReadError(
                        f"Failed to read source page after {cursor.last_doc_id or 'start'}: {e}",
                        last_doc_id=cursor.committed_doc_id,
                        migrated=cursor.migrated,
                    ) from e

                if not page:
                    break

                for doc_id, data in page:
                    cursor.last_doc_id = doc_id
                    rec = record_from_document(doc_id, data)
                    if rec is None:
                        continue
                    if use_month_filter and not (from_month <= rec.monthKey <= to_month):
                        continue
                    cursor.buffers.setdefault(rec.monthKey, {})[rec.id] = rec

                if cursor.buffered() >= self.flush_threshold:
                    logger.info(f"Buffer reached {cursor.buffered()} records, flushing")
                    self._flush(cursor, dry_run, rewrite_once)

            self._flush(cursor, dry_run, rewrite_once)

        if cursor.failed_months:
            logger.error(f"Months left unflushed (re-run with the same bounds): {sorted(cursor.failed_months)}")

        return MigrationResult(
            migrated=cursor.migrated,
            last_doc_id=cursor.committed_doc_id,
            loops=cursor.loops,
            dry_run=dry_run,
            from_month=from_month,
            to_month=to_month,
            failed_months=sorted(cursor.failed_months),
        )

    def _flush(self, cursor: MigrationCursor, dry_run: bool, rewrite_once: bool) -> None:
        """Write every non-empty month buffer.

        A month that fails keeps its buffer for the next flush; months already
        written stay written.
        """
        for month_key in sorted(cursor.buffers):
            upserts = cursor.buffers[month_key]
            if not upserts:
                continue

            first_flush = month_key not in cursor.flushed_months
            mode = MergeMode.REPLACE if rewrite_once and first_flush else MergeMode.MERGE

            if not dry_run:
                try:
                    self.writer.merge(month_key, upserts, mode)
                except IncomeLedgerError as e:
                    logger.error(f"Flush of {month_key} failed, keeping {len(upserts)} buffered: {e.message}")
                    cursor.failed_months.add(month_key)
                    continue

            cursor.flushed_months.add(month_key)
            cursor.failed_months.discard(month_key)
            cursor.migrated += len(upserts)
            cursor.buffers[month_key] = {}

        if not cursor.failed_months:
            cursor.committed_doc_id = cursor.last_doc_id
