"""Unit tests for the month partition backfill job."""

from __future__ import annotations

import json

import pytest

from app.core.exceptions import SourceReadError, ValidationError
from app.services.migration_service import MigrationService, record_from_document


def seed_partition(storage, month_key, items):
    storage.blobs[f"acct_income_json/{month_key}.json"] = json.dumps(
        {"meta": {"updatedAt": 1}, "items": items}, ensure_ascii=False
    ).encode("utf-8")


@pytest.fixture
def may_docs(make_doc):
    return {
        "doc-001": make_doc("2024-05-01", "관리비", in_amt=1000),
        "doc-002": make_doc("2024-05-02", "관리비", in_amt=2000),
        "doc-003": make_doc("2024-05-03", "전기요금", out_amt=3000),
        "doc-004": make_doc("2024-05-04", "관리비", in_amt=4000),
    }


class TestRecordFromDocument:
    """Tests for source document normalization."""

    def test_basic(self, make_doc):
        rec = record_from_document("doc-1", make_doc("2024-05-03", "관리비", in_amt="50,000"))
        assert rec.id == "doc-1"
        assert rec.monthKey == "2024-05"
        assert rec.inAmt == 50000
        assert rec.type == "deposit"
        assert rec.datetime == "2024-05-03 09:00:00"

    def test_stored_id_preferred(self, make_doc):
        rec = record_from_document("doc-1", make_doc("2024-05-03", "관리비", _id="r_abc"))
        assert rec.id == "r_abc"

    def test_missing_date_skipped(self, make_doc):
        assert record_from_document("doc-1", make_doc("", "관리비")) is None

    def test_month_key_derived_from_date(self):
        rec = record_from_document("doc-1", {"date": "2024-05-03", "inAmt": 10})
        assert rec.monthKey == "2024-05"
        assert rec.time == "00:00:00"

    def test_disagreeing_month_key_follows_date(self, make_doc):
        rec = record_from_document("doc-1", make_doc("2024-05-03", "관리비", monthKey="2024-04"))
        assert rec.monthKey == "2024-05"

    def test_malformed_month_key_skipped(self):
        assert record_from_document("doc-1", {"date": "May 3", "monthKey": "May"}) is None

    def test_legacy_type_labels(self, make_doc):
        assert record_from_document("d", make_doc("2024-05-03", "x", type="입금")).type == "deposit"
        assert record_from_document("d", make_doc("2024-05-03", "x", type="출금")).type == "withdrawal"

    def test_unknown_type_derived_from_amounts(self, make_doc):
        rec = record_from_document("d", make_doc("2024-05-03", "x", out_amt=500, type="이체"))
        assert rec.type == "withdrawal"


class TestMigrationRun:
    """Tests for paging, buffering and flushing."""

    def test_migrates_all_documents(self, make_source, writer, storage, may_docs):
        result = MigrationService(make_source(may_docs), writer, page_size=2, flush_threshold=100).run()

        assert result.migrated == 4
        assert result.last_doc_id == "doc-004"
        assert result.failed_months == []
        assert set(storage.partition("2024-05")["items"]) == set(may_docs)

    def test_loop_count_includes_final_empty_page(self, make_source, writer, may_docs):
        result = MigrationService(make_source(may_docs), writer, page_size=2, flush_threshold=100).run()
        assert result.loops == 3

    def test_empty_source(self, make_source, writer, storage):
        result = MigrationService(make_source({}), writer, page_size=2, flush_threshold=2).run()
        assert result.migrated == 0
        assert result.loops == 1
        assert result.last_doc_id == ""
        assert storage.writes == []

    def test_scenario_c_dry_run_writes_nothing(self, make_source, writer, storage, may_docs):
        seed_partition(storage, "2024-05", {"stale": {"_id": "stale", "date": "2024-05-09"}})
        before = dict(storage.blobs)

        result = MigrationService(make_source(may_docs), writer, page_size=2, flush_threshold=2).run(
            dry_run=True, rewrite_once=True
        )

        assert result.migrated == 4
        assert result.dry_run is True
        assert storage.blobs == before
        assert storage.writes == []

    def test_scenario_d_rewrite_once_per_month(self, make_source, writer, storage, may_docs):
        seed_partition(storage, "2024-05", {"stale": {"_id": "stale", "date": "2024-05-09"}})

        result = MigrationService(make_source(may_docs), writer, page_size=2, flush_threshold=2).run(
            rewrite_once=True
        )

        items = storage.partition("2024-05")["items"]
        assert result.migrated == 4
        assert storage.writes.count("acct_income_json/2024-05.json") == 2
        assert set(items) == set(may_docs)

    def test_merge_keeps_existing_items(self, make_source, writer, storage, may_docs):
        seed_partition(storage, "2024-05", {"old": {"_id": "old", "date": "2024-05-09"}})
        MigrationService(make_source(may_docs), writer, page_size=2, flush_threshold=2).run()
        assert set(storage.partition("2024-05")["items"]) == set(may_docs) | {"old"}

    def test_month_filter(self, make_source, make_doc, writer, storage):
        docs = {
            "a": make_doc("2024-02-10", "x", in_amt=1),
            "b": make_doc("2024-03-10", "x", in_amt=1),
            "c": make_doc("2024-05-10", "x", in_amt=1),
            "d": make_doc("2024-06-10", "x", in_amt=1),
        }
        result = MigrationService(make_source(docs), writer, page_size=10, flush_threshold=10).run(
            from_month="2024-03", to_month="2024-05"
        )

        assert result.migrated == 2
        assert result.last_doc_id == "d"
        assert writer.list_months() == ["2024-03", "2024-05"]

    def test_half_open_bounds_ignored(self, make_source, make_doc, writer):
        docs = {"a": make_doc("2024-02-10", "x"), "b": make_doc("2024-06-10", "x")}
        result = MigrationService(make_source(docs), writer, page_size=10, flush_threshold=10).run(
            from_month="2024-03"
        )
        assert result.migrated == 2

    def test_resume_after_cursor(self, make_source, writer, storage, may_docs):
        source = make_source(may_docs)
        result = MigrationService(source, writer, page_size=10, flush_threshold=10).run(start_after="doc-002")

        assert source.calls[0] == ("doc-002", 10)
        assert result.migrated == 2
        assert set(storage.partition("2024-05")["items"]) == {"doc-003", "doc-004"}

    def test_skipped_documents_advance_cursor(self, make_source, make_doc, writer):
        docs = {"a": make_doc("2024-05-01", "x"), "b": make_doc("", "no date")}
        result = MigrationService(make_source(docs), writer, page_size=10, flush_threshold=10).run()
        assert result.migrated == 1
        assert result.last_doc_id == "b"

    def test_flush_threshold_bounds_buffer(self, make_source, make_doc, writer, storage):
        docs = {f"doc-{i:03d}": make_doc(f"2024-05-{i:02d}", "x", in_amt=i) for i in range(1, 7)}
        MigrationService(make_source(docs), writer, page_size=2, flush_threshold=2).run()
        assert storage.writes.count("acct_income_json/2024-05.json") == 3


class TestMigrationFailures:
    def test_source_error_reports_committed_cursor(self, make_source, writer, storage, may_docs):
        source = make_source(may_docs)
        source.fail_on_call = 2

        with pytest.raises(SourceReadError) as exc_info:
            MigrationService(source, writer, page_size=2, flush_threshold=100).run()

        err = exc_info.value
        assert err.last_doc_id == "doc-002"
        assert err.migrated == 2
        assert set(storage.partition("2024-05")["items"]) == {"doc-001", "doc-002"}

    def test_resume_after_source_error(self, make_source, writer, storage, may_docs):
        source = make_source(may_docs)
        source.fail_on_call = 2
        service = MigrationService(source, writer, page_size=2, flush_threshold=100)
        with pytest.raises(SourceReadError) as exc_info:
            service.run()

        source.fail_on_call = None
        result = service.run(start_after=exc_info.value.last_doc_id)

        assert result.migrated == 2
        assert set(storage.partition("2024-05")["items"]) == set(may_docs)

    def test_failed_month_does_not_block_others(self, make_source, make_doc, writer, storage):
        docs = {
            "a": make_doc("2024-04-10", "x", in_amt=1),
            "b": make_doc("2024-05-10", "x", in_amt=1),
            "c": make_doc("2024-05-11", "x", in_amt=1),
        }
        storage.fail_writes.add("acct_income_json/2024-04.json")

        result = MigrationService(make_source(docs), writer, page_size=10, flush_threshold=10).run()

        assert result.failed_months == ["2024-04"]
        assert result.migrated == 2
        assert result.last_doc_id == ""
        assert set(storage.partition("2024-05")["items"]) == {"b", "c"}
        assert "acct_income_json/2024-04.json" not in storage.blobs

    def test_cursor_stops_before_unwritten_records(self, make_source, make_doc, writer, storage):
        docs = {
            "a": make_doc("2024-05-10", "x", in_amt=1),
            "b": make_doc("2024-04-10", "x", in_amt=1),
            "c": make_doc("2024-05-11", "x", in_amt=1),
        }
        source = make_source(docs)
        service = MigrationService(source, writer, page_size=1, flush_threshold=1)
        storage.fail_writes.add("acct_income_json/2024-04.json")

        result = service.run()

        assert result.failed_months == ["2024-04"]
        assert result.last_doc_id == "a"

        storage.fail_writes.clear()
        service.run(start_after=result.last_doc_id)

        assert set(storage.partition("2024-04")["items"]) == {"b"}
        assert set(storage.partition("2024-05")["items"]) == {"a", "c"}

    def test_failed_month_retried_on_next_flush(self, make_source, make_doc, writer, storage):
        docs = {
            "a": make_doc("2024-04-10", "x", in_amt=1),
            "b": make_doc("2024-05-10", "x", in_amt=1),
        }
        storage.fail_writes.add("acct_income_json/2024-04.json")

        class HealingSource:
            def __init__(self, inner):
                self.inner = inner

            def fetch_page(self, start_after, limit):
                page = self.inner.fetch_page(start_after, limit)
                if start_after == "a":
                    storage.fail_writes.clear()
                return page

        result = MigrationService(HealingSource(make_source(docs)), writer, page_size=1, flush_threshold=1).run()

        assert result.failed_months == []
        assert result.migrated == 2
        assert set(storage.partition("2024-04")["items"]) == {"a"}

    @pytest.mark.parametrize("page_size, flush_threshold", [(0, 10), (10, 0), (-1, 10)])
    def test_invalid_sizes(self, make_source, writer, page_size, flush_threshold):
        with pytest.raises(ValidationError):
            MigrationService(make_source({}), writer, page_size=page_size, flush_threshold=flush_threshold)

    def test_response_shape(self, make_source, writer, may_docs):
        result = MigrationService(make_source(may_docs), writer, page_size=2, flush_threshold=2).run(
            from_month="2024-05", to_month="2024-05", dry_run=True
        )
        response = result.to_response()
        assert response.ok is True
        assert response.dryRun is True
        assert response.fromMonth == "2024-05"
        assert response.lastDocId == "doc-004"
