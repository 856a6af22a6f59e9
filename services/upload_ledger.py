"""
Upload Ledger
Audit trail for ingestion runs (``upload_logs``).

Lifecycle: processing -> success | partial | failed. The terminal write is
guarded by ``status = 'processing'`` so a session is finalized at most once
and never changes afterwards. Every call is best-effort: failures are logged
and swallowed so a broken ledger never blocks catalog writes.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional

from database import UploadSession
from services.errors import StoreError
from services.storage import StorageService, storage
from settings import UPLOAD_HISTORY_LIMIT

logger = logging.getLogger(__name__)

UploadStatus = Literal["processing", "success", "partial", "failed"]
TERMINAL_STATUSES = ("success", "partial", "failed")


def derive_status(success_count: int, error_count: int, aborted: bool = False) -> UploadStatus:
    """
    success: rows written, none failed. partial: rows written and some failed
    (or the run aborted after committing rows). failed: nothing written.
    """
    if success_count <= 0:
        return "failed"
    if error_count > 0 or aborted:
        return "partial"
    return "success"


class UploadLedger:
    def __init__(self, store: Optional[StorageService] = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store or storage
        self.clock = clock

    async def create(self, filename: str, uploader_id: str) -> Optional[str]:
        """Open a session in ``processing``. Returns None if the ledger is unreachable."""
        try:
            row = await self.store.insert(UploadSession, {
                "filename": filename,
                "uploader_id": uploader_id,
                "status": "processing",
                "success_count": 0,
                "error_count": 0,
                "created_at": self.clock(),
            })
        except StoreError as exc:
            logger.warning(f"Upload log unavailable for {filename!r}; continuing without it: {exc}")
            return None
        session_id = row.get("id") if row else None
        if session_id:
            logger.info(f"Created upload log id={session_id} filename={filename!r} uploader={uploader_id}")
        return session_id

    async def update_progress(self, session_id: Optional[str], success_count: int, error_count: int) -> None:
        """Overwrite the running counters with cumulative totals."""
        if not session_id:
            return
        try:
            updated = await self.store.update(
                UploadSession,
                {"id": session_id, "status": "processing"},
                {"success_count": max(0, success_count), "error_count": max(0, error_count)},
            )
            if updated is None:
                logger.warning(f"[{session_id}] progress update ignored; session is not processing")
        except StoreError as exc:
            logger.error(f"[{session_id}] Error updating progress: {exc}")

    async def finalize(
        self,
        session_id: Optional[str],
        status: UploadStatus,
        success_count: int,
        error_count: int,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Terminal write. Returns True only for the call that actually closed the session."""
        if not session_id:
            return False
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"finalize needs a terminal status, got {status!r}")
        try:
            updated = await self.store.update(
                UploadSession,
                {"id": session_id, "status": "processing"},
                {
                    "status": status,
                    "success_count": max(0, success_count),
                    "error_count": max(0, error_count),
                    "completed_at": self.clock(),
                    "details": details or {},
                },
            )
        except StoreError as exc:
            logger.error(f"[{session_id}] Error updating upload log with final results: {exc}")
            return False
        if updated is None:
            logger.warning(f"[{session_id}] upload log already finalized or missing; final write skipped")
            return False
        logger.info(f"[{session_id}] upload log finalized status={status} success={success_count} errors={error_count}")
        return True

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.find_one(UploadSession, {"id": session_id})

    async def history(self, limit: int = UPLOAD_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        return await self.store.find_recent(UploadSession, limit=limit)


upload_ledger = UploadLedger()
