"""
Ingestion Orchestrator
parse -> validate -> normalize/reconcile/write -> finalize, for one uploaded
spreadsheet. Row-level failures are counted; run-level failures finalize the
upload log with the counts reached so far and propagate.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from database import GarmentRecord
from services.batch_writer import BatchWriteAbortedError, BatchWriter
from services.errors import (
    IngestError,
    LookupFailedError,
    MissingKeyError,
    MissingRequiredColumnError,
    StoreError,
    StoreUnavailableIngestError,
)
from services.progress import ProgressState
from services.reconciler import Reconciler, WriteIntent
from services.row_normalizer import RawRow, normalize_row
from services.spreadsheet_parser import parse_spreadsheet
from services.storage import StorageService, storage
from services.upload_ledger import UploadLedger, derive_status
from settings import INGEST_BATCH_SIZE, ITEM_CODE_COLUMN, RECONCILE_PREFETCH, resolve_uploader_id

logger = logging.getLogger(__name__)


class Stage(Enum):
    PARSING = "parsing"
    VALIDATING = "validating"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class IngestResult:
    total: int
    success: int
    errors: int
    inserted: int
    updated: int
    session_id: Optional[str] = None
    status: str = "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "errors": self.errors,
            "inserted": self.inserted,
            "updated": self.updated,
            "sessionId": self.session_id,
            "status": self.status,
        }


def dedupe_records(
    records: Sequence[Tuple[int, Dict[str, Any]]],
) -> Tuple[List[Tuple[int, Dict[str, Any]]], Dict[str, int]]:
    """
    Collapse repeated item codes to their last occurrence (in file order of
    that last occurrence). Returns the survivors and code -> superseded count.
    """
    latest: Dict[str, Tuple[int, Dict[str, Any]]] = {}
    superseded: Dict[str, int] = {}
    for row_number, record in records:
        code = record["item_code"]
        if code in latest:
            superseded[code] = superseded.get(code, 0) + 1
            del latest[code]
        latest[code] = (row_number, record)
    return list(latest.values()), superseded


class IngestionService:
    def __init__(
        self,
        store: Optional[StorageService] = None,
        ledger: Optional[UploadLedger] = None,
        reconciler: Optional[Reconciler] = None,
        writer: Optional[BatchWriter] = None,
        batch_size: Optional[int] = None,
        prefetch: Optional[bool] = None,
        key_column: Optional[str] = None,
    ):
        self.store = store or storage
        self.ledger = ledger or UploadLedger(self.store)
        self.reconciler = reconciler or Reconciler(self.store)
        self.batch_size = max(1, batch_size or INGEST_BATCH_SIZE)
        self.writer = writer or BatchWriter(self.store, self.ledger, self.batch_size)
        self.prefetch = RECONCILE_PREFETCH if prefetch is None else prefetch
        self.key_column = key_column or ITEM_CODE_COLUMN

    async def ingest(self, file_bytes: bytes, filename: str, uploader_id: Optional[str] = None) -> IngestResult:
        started = time.monotonic()
        filename = filename or "upload"
        uploader = resolve_uploader_id(uploader_id)
        session_id = await self.ledger.create(filename, uploader)
        tag = f"[{session_id or 'no-log'}]"
        logger.info(f"{tag} Ingesting {filename!r} for uploader={uploader}")

        stage = Stage.PARSING
        progress = ProgressState()
        total = 0
        try:
            rows = await asyncio.to_thread(parse_spreadsheet, file_bytes, filename)
            total = len(rows)

            stage = Stage.VALIDATING
            self._validate_columns(rows)

            stage = Stage.PROCESSING
            records: List[Tuple[int, Dict[str, Any]]] = []
            for row_number, raw in enumerate(rows, start=1):
                try:
                    records.append((row_number, normalize_row(raw, row_number, self.key_column)))
                except MissingKeyError as exc:
                    logger.warning(f"{tag} {exc.message}")
                    progress = progress.with_row_error(exc)

            survivors, superseded = dedupe_records(records)
            if superseded:
                logger.info(f"{tag} {sum(superseded.values())} duplicate rows; last occurrence wins for {len(superseded)} item codes")

            known_ids = await self._prefetch(tag, [record["item_code"] for _, record in survivors])
            for start in range(0, len(survivors), self.batch_size):
                intents: List[WriteIntent] = []
                for row_number, record in survivors[start:start + self.batch_size]:
                    try:
                        intents.append(await self.reconciler.reconcile(
                            record, row_number=row_number, upload_id=session_id, known_ids=known_ids,
                        ))
                    except LookupFailedError as exc:
                        progress = progress.with_row_error(exc)
                if intents:
                    result = await self.writer.write_batch(intents, session_id=session_id, baseline=progress)
                    progress = progress.merge(result)

            stage = Stage.FINALIZING
            progress = self._settle_duplicates(progress, superseded)
            status = derive_status(progress.success, progress.errors)
            details = progress.details()
            details.update({
                "total": total,
                "duplicateItemCodes": sorted(superseded),
                "durationMs": int((time.monotonic() - started) * 1000),
            })
            await self.ledger.finalize(session_id, status, progress.success, progress.errors, details)
            await self._log_catalog_size(tag)
        except BatchWriteAbortedError as exc:
            progress = progress.merge(exc.result)
            await self._abort(session_id, stage, progress, total, exc)
            raise
        except IngestError as exc:
            await self._abort(session_id, stage, progress, total, exc)
            raise
        except StoreError as exc:
            fatal = StoreUnavailableIngestError(f"Store unavailable during {stage.value}: {exc.message}")
            await self._abort(session_id, stage, progress, total, fatal)
            raise fatal from exc
        except asyncio.CancelledError as exc:
            await asyncio.shield(self._abort(session_id, stage, progress, total, exc))
            raise
        except Exception as exc:
            logger.exception(f"{tag} Unexpected failure during {stage.value}")
            await self._abort(session_id, stage, progress, total, exc)
            raise

        stage = Stage.DONE
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"{tag} Ingestion {stage.value}: total={total} success={progress.success} errors={progress.errors} "
            f"inserted={progress.inserted} updated={progress.updated} status={status} ({elapsed_ms}ms)"
        )
        return IngestResult(
            total=total,
            success=progress.success,
            errors=progress.errors,
            inserted=progress.inserted,
            updated=progress.updated,
            session_id=session_id,
            status=status,
        )

    def _validate_columns(self, rows: Sequence[RawRow]) -> None:
        columns = list(rows[0].keys())
        if self.key_column not in columns:
            raise MissingRequiredColumnError([self.key_column], found=columns)

    async def _prefetch(self, tag: str, item_codes: List[str]) -> Optional[Dict[str, str]]:
        if not self.prefetch or not item_codes:
            return None
        try:
            return await self.reconciler.prefetch(item_codes)
        except StoreError as exc:
            logger.warning(f"{tag} Existing-code pre-check failed, falling back to per-row lookups: {exc}")
            return None

    @staticmethod
    def _settle_duplicates(progress: ProgressState, superseded: Dict[str, int]) -> ProgressState:
        """Superseded occurrences share the outcome of the surviving row for their item code."""
        failed = set(progress.failed_item_codes)
        ok = sum(n for code, n in superseded.items() if code not in failed)
        lost = sum(n for code, n in superseded.items() if code in failed)
        return ProgressState(
            success=progress.success + ok,
            errors=progress.errors + lost,
            inserted=progress.inserted,
            updated=progress.updated,
            failed_item_codes=progress.failed_item_codes,
            row_errors=progress.row_errors,
        )

    async def _abort(
        self,
        session_id: Optional[str],
        stage: Stage,
        progress: ProgressState,
        total: int,
        exc: BaseException,
    ) -> None:
        if isinstance(exc, IngestError):
            exc.stage = stage.value
            error_code = exc.error_code
            message = exc.message
        elif isinstance(exc, asyncio.CancelledError):
            error_code = "CANCELLED"
            message = "Ingestion was cancelled"
        else:
            error_code = "INTERNAL_ERROR"
            message = str(exc) or exc.__class__.__name__

        status = derive_status(progress.success, progress.errors, aborted=True)
        details = progress.details()
        details.update({"total": total, "error": message, "errorCode": error_code, "stage": stage.value})
        logger.error(
            f"[{session_id or 'no-log'}] Ingestion {Stage.FAILED.value} at {stage.value}: {message} "
            f"(success={progress.success} errors={progress.errors})"
        )
        await self.ledger.finalize(session_id, status, progress.success, progress.errors, details)

    async def _log_catalog_size(self, tag: str) -> None:
        try:
            count = await self.store.count(GarmentRecord)
        except StoreError as exc:
            logger.warning(f"{tag} Could not count catalog rows: {exc}")
            return
        logger.info(f"{tag} Catalog now holds {count} garments")


ingestion_service = IngestionService()
