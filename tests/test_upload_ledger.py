import asyncio
import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from helpers import FakeStore

from database import UploadSession
from services.upload_ledger import UploadLedger, derive_status


@pytest.mark.parametrize(
    "success, errors, aborted, expected",
    [
        (10, 0, False, "success"),
        (10, 3, False, "partial"),
        (0, 3, False, "failed"),
        (0, 0, False, "failed"),
        (10, 0, True, "partial"),
        (0, 0, True, "failed"),
    ],
)
def test_derive_status(success, errors, aborted, expected):
    assert derive_status(success, errors, aborted) == expected


def _ledger(store):
    return UploadLedger(store, clock=lambda: datetime(2026, 10, 18, 9, 30))


def test_session_lifecycle():
    store = FakeStore()
    ledger = _ledger(store)

    async def run():
        sid = await ledger.create("stock.xlsx", "admin")
        await ledger.update_progress(sid, 50, 1)
        mid = await ledger.get(sid)
        closed = await ledger.finalize(sid, "partial", 99, 1, {"inserted": 99})
        return sid, mid, closed, await ledger.get(sid)

    sid, mid, closed, final = asyncio.run(run())

    assert sid
    assert mid["status"] == "processing"
    assert (mid["success_count"], mid["error_count"]) == (50, 1)
    assert closed is True
    assert final["status"] == "partial"
    assert final["completed_at"] == datetime(2026, 10, 18, 9, 30)
    assert final["details"] == {"inserted": 99}


def test_terminal_session_is_never_rewritten():
    store = FakeStore()
    ledger = _ledger(store)

    async def run():
        sid = await ledger.create("a.csv", "admin")
        await ledger.finalize(sid, "success", 3, 0)
        second = await ledger.finalize(sid, "failed", 0, 3)
        await ledger.update_progress(sid, 100, 100)
        return second, await ledger.get(sid)

    second, row = asyncio.run(run())

    assert second is False
    assert row["status"] == "success"
    assert (row["success_count"], row["error_count"]) == (3, 0)


def test_unreachable_ledger_degrades_to_no_session():
    store = FakeStore()
    store.ledger_down = True
    ledger = _ledger(store)

    async def run():
        sid = await ledger.create("a.csv", "admin")
        await ledger.update_progress("missing", 1, 0)
        closed = await ledger.finalize("missing", "success", 1, 0)
        return sid, closed

    sid, closed = asyncio.run(run())

    assert sid is None
    assert closed is False


def test_calls_without_session_are_noops():
    store = FakeStore()
    ledger = _ledger(store)

    asyncio.run(ledger.update_progress(None, 1, 1))
    assert asyncio.run(ledger.finalize(None, "failed", 0, 0)) is False
    assert store.calls == []


def test_finalize_rejects_non_terminal_status():
    ledger = _ledger(FakeStore())
    with pytest.raises(ValueError):
        asyncio.run(ledger.finalize("sid", "processing", 0, 0))


def test_history_is_newest_first():
    store = FakeStore()
    ledger = UploadLedger(store)

    async def run():
        for n, day in enumerate((1, 3, 2)):
            await store.insert(UploadSession, {"filename": f"f{n}.csv", "created_at": datetime(2026, 1, day)})
        return await ledger.history(limit=2)

    rows = asyncio.run(run())
    assert [r["filename"] for r in rows] == ["f1.csv", "f2.csv"]
