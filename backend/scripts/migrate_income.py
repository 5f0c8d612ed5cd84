"""
Income Partition Migration CLI

Runs the month-partition backfill from the shell instead of the HTTP
trigger. Useful for long migrations that need several resumed passes.

Usage:
    python -m scripts.migrate_income --from 2024-03 --to 2024-05 --dry-run
    python -m scripts.migrate_income --rewrite
    python -m scripts.migrate_income --start-after DOCID --until-done
"""

import argparse
import json
import sys

from app.core import config
from app.core.exceptions import IncomeLedgerError, SourceReadError
from app.repositories.firestore_repo import FirestoreIncomeSource
from app.repositories.partition_repo import PartitionWriter
from app.services.migration_service import MigrationService


def build_storage(backend: str):
    if backend == "local":
        from app.storage.local_storage import LocalStorageService

        return LocalStorageService(config.LOCAL_STORAGE_DIR)

    from app.storage.cloud_storage import CloudStorageService

    return CloudStorageService(config.STORAGE_BUCKET)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill income month partitions from Firestore")
    parser.add_argument("--from", dest="from_month", help="Inclusive lower month bound (YYYY-MM)")
    parser.add_argument("--to", dest="to_month", help="Inclusive upper month bound (YYYY-MM)")
    parser.add_argument("--dry-run", action="store_true", help="Count records without writing partitions")
    parser.add_argument("--rewrite", action="store_true", help="Replace each month on its first flush")
    parser.add_argument("--start-after", help="Resume after this document id")
    parser.add_argument(
        "--until-done",
        action="store_true",
        help="After a source read failure, resume from the returned cursor until the collection is exhausted",
    )
    parser.add_argument("--max-attempts", type=int, default=5, help="Attempts allowed with --until-done")
    parser.add_argument("--page-size", type=int, default=config.MIGRATION_PAGE_SIZE)
    parser.add_argument("--flush-threshold", type=int, default=config.MIGRATION_FLUSH_THRESHOLD)
    parser.add_argument("--storage", choices=["gcs", "local"], default=config.STORAGE_BACKEND)
    return parser.parse_args(argv)


def run(args: argparse.Namespace, service: MigrationService) -> dict:
    """Run the migration, resuming after read failures when --until-done is set."""
    start_after = args.start_after
    migrated = 0
    attempts = 0
    # Only the first pass of a rewrite may replace partitions
    rewrite = args.rewrite

    while True:
        attempts += 1
        try:
            result = service.run(
                from_month=args.from_month,
                to_month=args.to_month,
                dry_run=args.dry_run,
                rewrite_once=rewrite,
                start_after=start_after,
            )
        except SourceReadError as e:
            migrated += e.migrated
            print(f"  ✗ Read failed after {e.last_doc_id or 'start'}: {e.message}", file=sys.stderr)
            if not args.until_done or attempts >= args.max_attempts:
                return {"ok": False, "error": e.message, "lastDocId": e.last_doc_id, "migrated": migrated}
            start_after = e.last_doc_id or start_after
            rewrite = False
            continue

        response = result.to_response().model_dump()
        response["migrated"] += migrated
        return response


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        writer = PartitionWriter(build_storage(args.storage), prefix=config.INCOME_PARTITION_PREFIX)
        service = MigrationService(
            FirestoreIncomeSource(),
            writer,
            page_size=args.page_size,
            flush_threshold=args.flush_threshold,
        )
        output = run(args, service)
    except IncomeLedgerError as e:
        output = {"ok": False, "error": e.message}

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0 if output.get("ok") else 1


if __name__ == "__main__":
    sys.exit(main())
