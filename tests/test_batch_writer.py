import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from helpers import FakeStore, RecordingLedger

from database import GarmentRecord
from services.batch_writer import BatchWriteAbortedError, BatchWriter
from services.progress import ProgressState
from services.reconciler import WriteIntent


def _intents(count, prefix="FE", kind="insert"):
    return [
        WriteIntent(kind, {"id": f"id-{prefix}{n}", "item_code": f"{prefix}{n}", "title": f"t{n}"}, row_number=n)
        for n in range(1, count + 1)
    ]


def test_bad_row_is_isolated_from_its_chunk():
    store = FakeStore()
    store.poison_codes = {"BAD"}
    intents = _intents(50) + [WriteIntent("insert", {"id": "id-bad", "item_code": "BAD"}, row_number=51)]

    result = asyncio.run(BatchWriter(store, batch_size=51).write_batch(intents))

    assert result.succeeded == 50
    assert result.failed == 1
    assert result.failed_item_codes == ("BAD",)
    assert result.row_errors[0]["errorCode"] == "WRITE_FAILED"
    assert result.row_errors[0]["row"] == 51
    assert len(store.rows(GarmentRecord)) == 50
    # one failed bulk call, then one call per row
    assert store.count_calls("bulk_upsert") == 1 + 51


def test_chunks_by_batch_size_and_reports_cumulative_progress():
    store = FakeStore()
    ledger = RecordingLedger()
    baseline = ProgressState(success=5, errors=2)

    result = asyncio.run(BatchWriter(store, ledger, batch_size=50).write_batch(_intents(120), "sess-1", baseline))

    assert result.succeeded == 120
    assert store.count_calls("bulk_upsert") == 3
    assert [len(call[2]) for call in store.calls] == [50, 50, 20]
    assert ledger.progress == [("sess-1", 55, 2), ("sess-1", 105, 2), ("sess-1", 125, 2)]


def test_insert_and_update_tallies_follow_intent_kind():
    store = FakeStore()
    intents = _intents(3) + _intents(2, prefix="OLD", kind="update")

    result = asyncio.run(BatchWriter(store, batch_size=10).write_batch(intents))

    assert (result.inserted, result.updated) == (3, 2)


def test_fallback_counts_inserts_only_for_rows_written():
    store = FakeStore()
    store.poison_codes = {"FE2"}

    result = asyncio.run(BatchWriter(store, batch_size=3).write_batch(_intents(3)))

    assert (result.succeeded, result.failed, result.inserted) == (2, 1, 2)


def test_no_progress_reported_without_session():
    ledger = RecordingLedger()
    asyncio.run(BatchWriter(FakeStore(), ledger, batch_size=2).write_batch(_intents(3), session_id=None))
    assert ledger.progress == []


def test_store_outage_during_fallback_aborts_with_partial_result():
    store = FakeStore()
    store.poison_codes = {"FE53"}
    store.unavailable_codes = {"FE55"}
    ledger = RecordingLedger()

    with pytest.raises(BatchWriteAbortedError) as exc:
        asyncio.run(BatchWriter(store, ledger, batch_size=50).write_batch(_intents(60), "sess-2"))

    partial = exc.value.result
    # first chunk committed, then FE51, FE52, FE54 written and FE53 rejected before the outage
    assert partial.succeeded == 53
    assert partial.failed == 1
    assert exc.value.error_code == "STORE_UNAVAILABLE"
    assert ledger.progress[-1] == ("sess-2", 53, 1)
    assert len(store.rows(GarmentRecord)) == 53


def test_empty_input_writes_nothing():
    store = FakeStore()
    result = asyncio.run(BatchWriter(store).write_batch([]))
    assert result.succeeded == 0
    assert store.calls == []
