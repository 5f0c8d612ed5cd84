from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core import config
from app.repositories.firestore_repo import FirestoreIncomeSource
from app.repositories.partition_repo import BlobStorage, PartitionWriter
from app.schemas.models import ImportRequest, ImportResponse, MigrateResponse
from app.services.ingestion_service import IngestionService
from app.services.migration_service import IncomeSource, MigrationService

router = APIRouter()

# Lazy initialization to avoid GCP connections at import time (breaks tests)
_storage: BlobStorage | None = None
_source: IncomeSource | None = None


def get_storage() -> BlobStorage:
    global _storage
    if _storage is None:
        if config.STORAGE_BACKEND == "local":
            from app.storage.local_storage import LocalStorageService

            _storage = LocalStorageService(config.LOCAL_STORAGE_DIR)
        else:
            from app.storage.cloud_storage import CloudStorageService

            _storage = CloudStorageService(config.STORAGE_BUCKET)
    return _storage


def get_income_source() -> IncomeSource:
    global _source
    if _source is None:
        _source = FirestoreIncomeSource()
    return _source


def get_partition_writer(storage: BlobStorage = Depends(get_storage)) -> PartitionWriter:
    return PartitionWriter(storage, prefix=config.INCOME_PARTITION_PREFIX)


def get_ingestion_service(writer: PartitionWriter = Depends(get_partition_writer)) -> IngestionService:
    return IngestionService(writer)


def get_migration_service(
    writer: PartitionWriter = Depends(get_partition_writer),
    source: IncomeSource = Depends(get_income_source),
) -> MigrationService:
    return MigrationService(
        source,
        writer,
        page_size=config.MIGRATION_PAGE_SIZE,
        flush_threshold=config.MIGRATION_FLUSH_THRESHOLD,
    )


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/income/import", response_model=ImportResponse)
def import_income(
    payload: ImportRequest,
    service: IngestionService = Depends(get_ingestion_service),
) -> ImportResponse:
    """Import a bank statement spreadsheet into month partitions.

    Args:
        payload: Source URL of the statement and optional hot-window size

    Returns:
        ImportResponse with total, hot and cold record counts
    """
    result = service.import_from_url(payload.sourceUrl, recent_months=payload.recentMonths)
    return result.to_response()


@router.api_route("/income/migrate", methods=["GET", "POST"], response_model=MigrateResponse)
def migrate_income(
    from_month: Optional[str] = Query(None, alias="from"),
    to_month: Optional[str] = Query(None, alias="to"),
    dry_run: Optional[str] = Query(None, alias="dryRun"),
    rewrite: Optional[str] = Query(None),
    start_after: Optional[str] = Query(None, alias="startAfter"),
    service: MigrationService = Depends(get_migration_service),
) -> MigrateResponse:
    """Rebuild month partitions from the Firestore income collection.

    Flags accept "1"/"true". The response's lastDocId can be passed back as
    startAfter to resume a long migration.
    """
    result = service.run(
        from_month=from_month,
        to_month=to_month,
        dry_run=_flag(dry_run),
        rewrite_once=_flag(rewrite),
        start_after=start_after,
    )
    return result.to_response()


@router.get("/income/months")
def list_income_months(writer: PartitionWriter = Depends(get_partition_writer)) -> dict:
    """List month keys that have a partition blob."""
    return {"ok": True, "months": writer.list_months()}
