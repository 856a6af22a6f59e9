"""
Upload builders and in-memory stand-ins for the catalog store, shared by the pipeline tests.
"""
import copy
import io
import uuid
import zipfile
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from openpyxl import Workbook

from services.errors import StoreUnavailableError, StoreWriteError


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def garment_csv(count: int, start: int = 1, title: str = "Dress") -> bytes:
    lines = ["FE_Item_Code,Title,Brand,Retailer,Price"]
    for n in range(start, start + count):
        lines.append(f"FE{n:04d},{title} {n},Brand {n % 3},Shop {n % 2},£{n}.99")
    return csv_bytes(*lines)


def xlsx_bytes(rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def corrupt_xlsx_bytes() -> bytes:
    """A valid workbook archive whose first sheet holds truncated XML."""
    source = zipfile.ZipFile(io.BytesIO(xlsx_bytes([["FE_Item_Code", "Title"], ["A1", "Dress"]])))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as target:
        for item in source.infolist():
            data = source.read(item.filename)
            if item.filename == "xl/worksheets/sheet1.xml":
                data = b"<worksheet><sheetData><row><c r='A1'"
            target.writestr(item, data)
    return buffer.getvalue()


class FakeStore:
    """
    Dict-backed implementation of the StorageService methods the pipeline uses.

    Failure injection:
      poison_codes       item codes whose upsert is rejected (StoreWriteError)
      unavailable_codes  item codes whose upsert finds the store unreachable
      lookup_down        every find_one raises StoreUnavailableError
      find_many_down     the bulk pre-check raises StoreUnavailableError
      ledger_down        writes to upload_logs raise StoreUnavailableError
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.poison_codes: set = set()
        self.unavailable_codes: set = set()
        self.lookup_down = False
        self.find_many_down = False
        self.ledger_down = False

    def rows(self, model) -> List[Dict[str, Any]]:
        return list(self.tables.get(model.__tablename__, {}).values())

    def _table(self, model) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(model.__tablename__, {})

    @staticmethod
    def _matches(row: Dict[str, Any], predicate: Optional[Dict[str, Any]]) -> bool:
        return all(row.get(k) == v for k, v in (predicate or {}).items())

    def _check_ledger(self, model, operation: str) -> None:
        if self.ledger_down and model.__tablename__ == "upload_logs":
            raise StoreUnavailableError("ledger offline", operation=operation)

    async def find_one(self, model, predicate):
        self.calls.append(("find_one", model.__tablename__, dict(predicate)))
        if self.lookup_down and model.__tablename__ == "garments":
            raise StoreUnavailableError("lookup timed out", operation="find_one")
        self._check_ledger(model, "find_one")
        for row in self._table(model).values():
            if self._matches(row, predicate):
                return copy.deepcopy(row)
        return None

    async def find_many(self, model, column, values):
        self.calls.append(("find_many", model.__tablename__, list(values)))
        if self.find_many_down:
            raise StoreUnavailableError("pre-check timed out", operation="find_many")
        wanted = set(values)
        return [copy.deepcopy(r) for r in self._table(model).values() if r.get(column) in wanted]

    async def find_recent(self, model, limit=10, order_by="created_at"):
        self.calls.append(("find_recent", model.__tablename__, limit))
        rows = sorted(self._table(model).values(), key=lambda r: r.get(order_by) or datetime.min, reverse=True)
        return [copy.deepcopy(r) for r in rows[:limit]]

    async def insert(self, model, values):
        self.calls.append(("insert", model.__tablename__, dict(values)))
        self._check_ledger(model, "insert")
        row = {"id": str(uuid.uuid4()), "completed_at": None, "details": None}
        row.update(values)
        self._table(model)[row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, model, predicate, patch):
        self.calls.append(("update", model.__tablename__, dict(predicate), dict(patch)))
        self._check_ledger(model, "update")
        for row in self._table(model).values():
            if self._matches(row, predicate):
                row.update(copy.deepcopy(dict(patch)))
                return copy.deepcopy(row)
        return None

    async def bulk_upsert(self, model, rows: Sequence[Dict[str, Any]], conflict_key):
        codes = [r[conflict_key] for r in rows]
        self.calls.append(("bulk_upsert", model.__tablename__, codes))
        if any(code in self.unavailable_codes for code in codes):
            raise StoreUnavailableError("connection reset", operation="bulk_upsert")
        if any(code in self.poison_codes for code in codes):
            raise StoreWriteError("value too long for column", operation="bulk_upsert")
        table = self._table(model)
        for incoming in rows:
            existing = next((r for r in table.values() if r.get(conflict_key) == incoming[conflict_key]), None)
            if existing is None:
                row = copy.deepcopy(dict(incoming))
                table[row["id"]] = row
            else:
                kept = {"id": existing["id"], "created_at": existing.get("created_at")}
                existing.update(copy.deepcopy(dict(incoming)))
                existing.update(kept)
        return len(rows)

    async def count(self, model, predicate=None):
        self.calls.append(("count", model.__tablename__))
        return sum(1 for r in self._table(model).values() if self._matches(r, predicate))

    async def select_columns(self, model, *columns):
        self.calls.append(("select_columns", model.__tablename__, columns))
        return [
            {c: r.get(c) for c in columns}
            for r in self._table(model).values()
            if r.get(columns[0]) is not None
        ]

    def count_calls(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


class RecordingLedger:
    """Captures progress reports from the Batch Writer."""

    def __init__(self):
        self.progress: List[tuple] = []

    async def update_progress(self, session_id, success_count, error_count):
        self.progress.append((session_id, success_count, error_count))
