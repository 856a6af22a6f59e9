"""
Batch Writer
Two-tier write strategy for reconciled garment rows: one keyed bulk upsert
per chunk, and when that fails, one single-row upsert per intent so a bad
row cannot take its siblings down with it.
"""
from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from database import GarmentRecord
from services.errors import StoreError, StoreUnavailableError, StoreUnavailableIngestError, WriteFailedError
from services.progress import BatchResult, ProgressState
from services.reconciler import WriteIntent
from services.storage import StorageService, storage
from services.upload_ledger import UploadLedger
from settings import INGEST_BATCH_SIZE

logger = logging.getLogger(__name__)

CONFLICT_KEY = "item_code"


class BatchWriteAbortedError(StoreUnavailableIngestError):
    """The store went away mid-fallback. ``result`` holds what was committed before that."""

    def __init__(self, message: str, result: BatchResult):
        self.result = result
        super().__init__(message, details={"succeeded": result.succeeded, "failed": result.failed})


def _tally(intents: Sequence[WriteIntent]) -> BatchResult:
    inserted = sum(1 for intent in intents if intent.is_insert)
    return BatchResult(succeeded=len(intents), inserted=inserted, updated=len(intents) - inserted)


class BatchWriter:
    def __init__(
        self,
        store: Optional[StorageService] = None,
        ledger: Optional[UploadLedger] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store or storage
        self.ledger = ledger
        self.batch_size = max(1, batch_size or INGEST_BATCH_SIZE)

    def chunks(self, intents: Sequence[WriteIntent]) -> List[Sequence[WriteIntent]]:
        return [intents[i:i + self.batch_size] for i in range(0, len(intents), self.batch_size)]

    async def write_batch(
        self,
        intents: Sequence[WriteIntent],
        session_id: Optional[str] = None,
        baseline: Optional[ProgressState] = None,
    ) -> BatchResult:
        """
        Write every intent, chunk by chunk, and report cumulative progress
        (``baseline`` plus this call's counts) to the ledger after each chunk.

        Raises BatchWriteAbortedError when the store becomes unreachable during
        a per-row fallback; chunks written before that stay committed.
        """
        baseline = baseline or ProgressState()
        result = BatchResult()
        chunks = self.chunks(intents)
        for index, chunk in enumerate(chunks, start=1):
            started = time.monotonic()
            try:
                outcome = await self._write_chunk(chunk, session_id)
            except BatchWriteAbortedError as exc:
                aborted = result + exc.result
                await self._report(session_id, baseline, aborted)
                raise BatchWriteAbortedError(exc.message, aborted) from exc.__cause__
            result = result + outcome
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"[{session_id}] chunk {index}/{len(chunks)}: "
                f"{outcome.succeeded} written, {outcome.failed} failed ({elapsed_ms}ms)"
            )
            await self._report(session_id, baseline, result)
        return result

    async def _report(self, session_id: Optional[str], baseline: ProgressState, result: BatchResult) -> None:
        if self.ledger is None or not session_id:
            return
        await self.ledger.update_progress(
            session_id,
            baseline.success + result.succeeded,
            baseline.errors + result.failed,
        )

    async def _write_chunk(self, chunk: Sequence[WriteIntent], session_id: Optional[str]) -> BatchResult:
        try:
            await self.store.bulk_upsert(GarmentRecord, [intent.record for intent in chunk], CONFLICT_KEY)
            return _tally(chunk)
        except StoreError as exc:
            logger.warning(
                f"[{session_id}] bulk upsert of {len(chunk)} rows failed, retrying row by row: {exc}"
            )

        result = BatchResult()
        for intent in chunk:
            try:
                await self.store.bulk_upsert(GarmentRecord, [intent.record], CONFLICT_KEY)
            except StoreUnavailableError as exc:
                raise BatchWriteAbortedError(f"Store unavailable while writing {intent.item_code}: {exc}", result) from exc
            except StoreError as exc:
                logger.error(f"[{session_id}] row {intent.row_number} item_code={intent.item_code} failed: {exc}")
                result = result.with_failure(
                    WriteFailedError(intent.item_code, exc.message, row_number=intent.row_number)
                )
                continue
            result = result + _tally([intent])
        return result
