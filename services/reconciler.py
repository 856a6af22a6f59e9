"""
Reconciliation Engine
Decides insert vs. update for each normalized row by looking the item code up in the store.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Literal, Optional

from database import GarmentRecord
from services.errors import LookupFailedError, StoreError
from services.storage import StorageService, storage
from settings import KNOWN_COLUMNS

logger = logging.getLogger(__name__)

IntentKind = Literal["insert", "update"]


@dataclass(frozen=True)
class WriteIntent:
    """A fully stamped garment row plus what the store is expected to do with it."""

    kind: IntentKind
    record: Dict[str, Any]
    existing_id: Optional[str] = None
    row_number: Optional[int] = None

    @property
    def item_code(self) -> str:
        return self.record["item_code"]

    @property
    def is_insert(self) -> bool:
        return self.kind == "insert"


class Reconciler:
    def __init__(self, store: Optional[StorageService] = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store or storage
        self.clock = clock

    async def prefetch(self, item_codes: Iterable[str]) -> Dict[str, str]:
        """item_code -> existing storage id for every code already in the catalog (one IN query)."""
        codes = list(dict.fromkeys(item_codes))
        if not codes:
            return {}
        rows = await self.store.find_many(GarmentRecord, "item_code", codes)
        return {row["item_code"]: row["id"] for row in rows}

    async def reconcile(
        self,
        record: Dict[str, Any],
        row_number: Optional[int] = None,
        upload_id: Optional[str] = None,
        known_ids: Optional[Dict[str, str]] = None,
    ) -> WriteIntent:
        """
        Look the record's item code up and produce the matching intent.

        ``known_ids`` is a prefetched item_code -> id map; when given, no store
        call is made. Store failures surface as LookupFailedError (row-scoped).
        """
        item_code = record["item_code"]
        if known_ids is not None:
            existing_id = known_ids.get(item_code)
        else:
            try:
                existing = await self.store.find_one(GarmentRecord, {"item_code": item_code})
            except StoreError as exc:
                logger.warning(f"Lookup failed for item_code={item_code} row={row_number}: {exc}")
                raise LookupFailedError(item_code, str(exc), row_number=row_number) from exc
            existing_id = existing["id"] if existing else None

        now = self.clock()
        payload = {field: None for field in KNOWN_COLUMNS.values()}
        payload.update(record)
        payload["upload_id"] = upload_id
        payload["updated_at"] = now

        if existing_id:
            payload["id"] = existing_id
            # Kept on conflict; only lands if the row vanished before the write
            payload["created_at"] = now
            return WriteIntent("update", payload, existing_id=existing_id, row_number=row_number)

        payload["id"] = str(uuid.uuid4())
        payload["created_at"] = now
        return WriteIntent("insert", payload, row_number=row_number)
