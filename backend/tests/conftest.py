"""Pytest fixtures and configuration."""

from __future__ import annotations

import json
import os
from io import BytesIO
from typing import Any, Optional

import pytest
from openpyxl import Workbook

# Set environment variables before importing app modules
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOG_LEVEL"] = "DEBUG"

from app.repositories.partition_repo import PartitionWriter  # noqa: E402
from app.services.workbook_reader import WorksheetGrid  # noqa: E402


class InMemoryStorage:
    """Blob store double with the CloudStorageService interface."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.writes: list[str] = []
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()

    def exists(self, path: str) -> bool:
        return path in self.blobs

    def read_bytes(self, path: str) -> Optional[bytes]:
        if path in self.fail_reads:
            raise ConnectionError(f"read of {path} refused")
        return self.blobs.get(path)

    def write_bytes(self, path: str, content: bytes, content_type: Optional[str] = None) -> str:
        if path in self.fail_writes:
            raise ConnectionError(f"write of {path} refused")
        self.blobs[path] = content
        self.writes.append(path)
        return path

    def list_paths(self, prefix: str) -> list[str]:
        return sorted(p for p in self.blobs if p.startswith(prefix))

    def partition(self, month_key: str, prefix: str = "acct_income_json") -> dict[str, Any]:
        return json.loads(self.blobs[f"{prefix}/{month_key}.json"].decode("utf-8"))


class FakeIncomeSource:
    """Firestore income collection double ordered by document id."""

    def __init__(self, docs: dict[str, dict[str, Any]]) -> None:
        self.docs = dict(sorted(docs.items()))
        self.calls: list[tuple[Optional[str], int]] = []
        self.fail_on_call: Optional[int] = None

    def fetch_page(self, start_after: Optional[str], limit: int) -> list[tuple[str, dict[str, Any]]]:
        self.calls.append((start_after, limit))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise TimeoutError("deadline exceeded")
        ids = [doc_id for doc_id in self.docs if start_after is None or doc_id > start_after]
        return [(doc_id, dict(self.docs[doc_id])) for doc_id in ids[:limit]]


def income_doc(date: str, record: str, in_amt: Any = 0, out_amt: Any = 0, **extra: Any) -> dict[str, Any]:
    doc = {
        "date": date,
        "time": "09:00:00",
        "monthKey": date[:7],
        "inAmt": in_amt,
        "outAmt": out_amt,
        "record": record,
        "accountNo": "110-123-456789",
        "holder": "한남관리",
    }
    doc.update(extra)
    return doc


def build_xlsx(rows: list[list[Any]], epoch1904: bool = False) -> bytes:
    """Build an XLSX workbook in memory with ``rows`` on the first sheet."""
    wb = Workbook()
    if epoch1904:
        from openpyxl.utils.datetime import CALENDAR_MAC_1904

        wb.epoch = CALENDAR_MAC_1904
    ws = wb.active
    ws.title = "거래내역"
    for row in rows:
        ws.append(row)
    out = BytesIO()
    wb.save(out)
    return out.getvalue()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def writer(storage: InMemoryStorage) -> PartitionWriter:
    return PartitionWriter(storage)


@pytest.fixture
def statement_rows() -> list[list[Any]]:
    """A Korean bank statement export with a preamble above the header."""
    return [
        ["거래내역조회", "", "", "", "", "", ""],
        ["계좌번호", "110-123-456789", "", "예금주명", "한남관리", "", ""],
        ["조회기간", "2024.04.01 ~ 2024.05.31", "", "", "", "", ""],
        ["", "", "", "", "", "", ""],
        ["순번", "거래일시", "입금금액", "출금금액", "거래후잔액", "거래기록사항", "거래메모"],
        [1, "2024/5/3 14:20:00", 50000, 0, 1050000, "관리비", "101호"],
        [2, "2024.05.10 09:05", 0, "12,000", 1038000, "전기요금", ""],
        [3, "2024-04-28 18:30:15", "₩30,000", "", 1000000, "관리비", "202호"],
        ["", "", "", "", "", "", ""],
        [4, "합계", 80000, 12000, "", "", ""],
    ]


@pytest.fixture
def statement_grid(statement_rows) -> WorksheetGrid:
    return WorksheetGrid(rows=statement_rows, epoch1904=False, sheet_name="거래내역")


@pytest.fixture
def scenario_a_grid() -> WorksheetGrid:
    return WorksheetGrid(
        rows=[
            ["거래일시", "입금금액", "거래기록사항"],
            ["2024/5/3 14:20:00", 50000, "관리비"],
        ]
    )


@pytest.fixture
def make_xlsx():
    return build_xlsx


@pytest.fixture
def make_source():
    return FakeIncomeSource


@pytest.fixture
def make_doc():
    return income_doc
