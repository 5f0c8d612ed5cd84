"""
Month Partition Repository

The only writer of month partitions. Each partition is one JSON blob:

    acct_income_json/{YYYY-MM}.json
    {"meta": {"updatedAt": <epoch ms>}, "items": {"<id>": {...record...}}}

Writes are read-merge-write with last-writer-wins semantics; callers are
expected to serialize writes to the same month within one run.
"""

from __future__ import annotations

import json
import time
from typing import Mapping, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from app.core.config import INCOME_PARTITION_PREFIX
from app.core.exceptions import PartitionWriteError, ValidationError
from app.core.logging import get_logger
from app.core.utils import is_month_key
from app.schemas.models import IncomeRecord, MergeMode, MonthPartition, PartitionMeta

logger = get_logger("ledger.repositories.partition")


class BlobStorage(Protocol):
    def read_bytes(self, path: str) -> Optional[bytes]: ...

    def write_bytes(self, path: str, content: bytes, content_type: Optional[str] = None) -> str: ...

    def list_paths(self, prefix: str) -> list[str]: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class PartitionWriter:
    """Reads and merges month partitions in a blob store."""

    def __init__(self, storage: BlobStorage, prefix: str = INCOME_PARTITION_PREFIX) -> None:
        self.storage = storage
        self.prefix = prefix.rstrip("/")

    def path_for(self, month_key: str) -> str:
        if not is_month_key(month_key):
            raise ValidationError(f"Invalid month key: {month_key!r}", details={"monthKey": month_key})
        return f"{self.prefix}/{month_key}.json"

    def load(self, month_key: str) -> MonthPartition:
        """
        Load a partition, treating any read problem as an empty partition.

        Missing blobs, storage errors, invalid JSON and blobs that do not
        match the partition shape all yield an empty partition.
        """
        path = self.path_for(month_key)
        try:
            raw = self.storage.read_bytes(path)
        except Exception as e:
            logger.warning(f"Could not read partition {path}, starting empty: {e}")
            return MonthPartition(items={})

        if not raw:
            return MonthPartition(items={})

        try:
            return MonthPartition.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Corrupt partition {path}, starting empty: {e}")
            return MonthPartition(items={})

    def read_items(self, month_key: str) -> dict[str, IncomeRecord]:
        return dict(self.load(month_key).items)

    def merge(
        self,
        month_key: str,
        new_items: Mapping[str, IncomeRecord],
        mode: MergeMode = MergeMode.MERGE,
    ) -> int:
        """
        Merge records into a month partition and write it back.

        Args:
            month_key: Partition key (YYYY-MM)
            new_items: Records keyed by id; they win on id collision
            mode: MERGE keeps existing ids, REPLACE discards them

        Returns:
            Number of items in the partition after the write
        """
        path = self.path_for(month_key)

        items: dict[str, IncomeRecord] = {}
        if mode == MergeMode.MERGE:
            items = self.read_items(month_key)
        before = len(items)
        items.update(new_items)

        partition = MonthPartition(meta=PartitionMeta(updatedAt=_now_ms()), items=items)
        body = json.dumps(partition.to_blob(), ensure_ascii=False).encode("utf-8")
        try:
            self.storage.write_bytes(path, body, content_type="application/json")
        except Exception as e:
            raise PartitionWriteError(
                f"Failed to write partition {path}: {e}",
                details={"monthKey": month_key},
            ) from e

        logger.info(
            f"Wrote partition {month_key} ({mode.value}): "
            f"{before} existing + {len(new_items)} upserts -> {len(items)} items"
        )
        return len(items)

    def list_months(self) -> list[str]:
        """List month keys that currently have a partition blob."""
        months = []
        for path in self.storage.list_paths(f"{self.prefix}/"):
            name = path.rsplit("/", 1)[-1]
            if name.endswith(".json") and is_month_key(name[:-5]):
                months.append(name[:-5])
        return sorted(months)
