"""
Spreadsheet Upload Router
Bulk garment ingestion plus the upload log views.
"""
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from typing import Optional
import logging
import uuid

from schemas import DashboardStats, IngestResponse, UploadHistoryEntry, UploadHistoryResponse
from services.catalog_queries import CatalogQueries, catalog_queries, format_upload
from services.errors import StoreError
from services.ingestion import IngestionService, ingestion_service
from services.upload_ledger import UploadLedger, upload_ledger
from settings import MAX_UPLOAD_BYTES, UPLOAD_HISTORY_LIMIT, resolve_uploader_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin")


def get_ingestion_service() -> IngestionService:
    return ingestion_service


def get_upload_ledger() -> UploadLedger:
    return upload_ledger


def get_catalog_queries() -> CatalogQueries:
    return catalog_queries


@router.post("/upload", response_model=IngestResponse)
@router.post("/upload-excel", response_model=IngestResponse, include_in_schema=False)
async def upload_spreadsheet(
    request: Request,
    file: Optional[UploadFile] = File(None),
    uploaderId: Optional[str] = Form(None),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Ingest an Excel/CSV garment sheet synchronously.
    Any completed run answers 200, whatever its upload log status; run-level
    failures are mapped to 4xx/5xx by the IngestError handler.
    """
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    if file is None or not file.filename:
        logger.warning(f"[{request_id}] Upload rejected: no file attached")
        raise HTTPException(status_code=400, detail="No file uploaded")

    content = await file.read()
    size = len(content or b"")
    logger.info(f"[{request_id}] Upload filename={file.filename!r} size={size} bytes content_type={file.content_type!r}")
    if size == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)}MB")

    uploader = resolve_uploader_id(uploaderId, request.headers.get("X-Uploader-Id"))
    result = await service.ingest(content, file.filename, uploader)
    logger.info(f"[{request_id}] Upload processed session={result.session_id} status={result.status}")
    return IngestResponse(
        message=f"File processed. {result.success} records written, {result.errors} errors.",
        **result.to_dict(),
    )


@router.get("/upload-history", response_model=UploadHistoryResponse)
async def get_upload_history(
    limit: int = UPLOAD_HISTORY_LIMIT,
    ledger: UploadLedger = Depends(get_upload_ledger),
):
    try:
        rows = await ledger.history(limit=max(1, min(limit, 100)))
    except StoreError as e:
        logger.error(f"Error retrieving upload history: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving upload history")
    return UploadHistoryResponse(history=[UploadHistoryEntry(**format_upload(row)) for row in rows])


@router.get("/upload-history/{session_id}", response_model=UploadHistoryEntry)
async def get_upload_session(session_id: str, ledger: UploadLedger = Depends(get_upload_ledger)):
    """Single upload log, for polling a long-running upload."""
    try:
        row = await ledger.get(session_id)
    except StoreError as e:
        logger.error(f"Error retrieving upload {session_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving upload")
    if row is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    return UploadHistoryEntry(**format_upload(row))


@router.get("/dashboard-stats", response_model=DashboardStats)
async def get_dashboard_stats(queries: CatalogQueries = Depends(get_catalog_queries)):
    try:
        stats = await queries.dashboard_stats()
    except StoreError as e:
        logger.error(f"Error retrieving dashboard stats: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving dashboard statistics")
    return DashboardStats(**stats)
