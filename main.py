"""
FastAPI Application Entry Point
Garment Catalog Ingestion - Python Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from dotenv import load_dotenv
from collections import defaultdict
from asyncio import Lock
from typing import Callable, Dict
import asyncio
import json
import logging
import os
import sys
import time
import uuid as _uuid

from routers import catalog, uploads
from database import init_db, check_db_health, get_pool_status
from services.errors import IngestError

# Load environment variables
load_dotenv()


# ---- Logging setup (JSON on stdout) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JsonFormatter())

root = logging.getLogger()
root.handlers = [handler]
root.setLevel(LOG_LEVEL)

logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Garment Catalog Ingestion API",
    description="Bulk spreadsheet ingestion and catalog listings for the garment catalog",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

cors_origins_raw = os.getenv("CORS_ORIGINS", "http://localhost:3000")
cors_origins = [origin.strip() for origin in cors_origins_raw.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["http://localhost:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- Request/Response logging middleware ----
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        start = time.time()
        request.state.request_id = request_id

        # Never read the body here; uploads can be large
        logger.info(
            f"REQ {request.method} {request.url.path} "
            f"ip={request.client.host if request.client else '-'} rid={request_id}"
        )
        response = await call_next(request)

        dur_ms = int((time.time() - start) * 1000)
        logger.info(
            f"RES {request.method} {request.url.path} "
            f"status={response.status_code} durMs={dur_ms} rid={request_id}"
        )
        response.headers["X-Request-Id"] = request_id
        return response


app.add_middleware(RequestIDMiddleware)


# ---- Rate Limiting Middleware ----
class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window limiter, per client IP.
    """
    def __init__(self, app, requests_per_minute: int = 60):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.window_seconds = 60
        self._requests: Dict[str, list] = defaultdict(list)
        self._lock = Lock()
        self._last_sweep = time.time()
        self._exempt_paths = {"/healthz", "/api/health", "/", "/api/docs", "/api/redoc", "/api/openapi.json"}

    def _evict_idle(self, now: float) -> None:
        """Drop clients with no request inside the window. Caller holds the lock."""
        idle = [ip for ip, stamps in self._requests.items() if not stamps or now - stamps[-1] >= self.window_seconds]
        for ip in idle:
            del self._requests[ip]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        async with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._evict_idle(now)
            recent = [t for t in self._requests[client_ip] if now - t < self.window_seconds]
            if len(recent) >= self.requests_per_minute:
                self._requests[client_ip] = recent
                logger.warning(f"Rate limit exceeded for IP: {client_ip}")
                return JSONResponse(
                    status_code=429,
                    content={"error": "Rate limit exceeded", "retry_after_seconds": self.window_seconds},
                    headers={"Retry-After": str(self.window_seconds)},
                )
            recent.append(now)
            self._requests[client_ip] = recent

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.requests_per_minute - len(recent)))
        return response


RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_RPM = int(os.getenv("RATE_LIMIT_RPM", "120"))

if RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware, requests_per_minute=RATE_LIMIT_RPM)
    logger.info(f"Rate limiting enabled: {RATE_LIMIT_RPM} requests/minute")


@app.get("/")
async def root_index():
    return {"ok": True, "service": "garment-catalog-ingestion"}


@app.get("/healthz")
async def healthz():
    """Basic health check for load balancers."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    """Health check including database status."""
    db_health = await check_db_health()
    overall_status = "healthy" if db_health["status"] == "healthy" else "degraded"
    return {"status": overall_status, "database": db_health, "timestamp": time.time()}


@app.get("/api/health/pool")
async def api_health_pool():
    return {"pool": await get_pool_status(), "timestamp": time.time()}


# --- Error handlers ---
@app.exception_handler(IngestError)
async def ingest_exception_handler(request: Request, exc: IngestError):
    rid = getattr(request.state, "request_id", "-")
    logger.error(f"Ingestion failed rid={rid} code={exc.error_code} stage={exc.stage}: {exc.message}")
    body = exc.to_dict()
    if exc.stage:
        body["stage"] = exc.stage
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Routers ---
app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(catalog.router, prefix="/api", tags=["catalog"])


# --- Startup/shutdown ---
@app.on_event("startup")
async def startup():
    logger.info("Starting Garment Catalog Ingestion API...")
    if os.getenv("INIT_DB_ON_STARTUP", "false").lower() == "true":
        try:
            logger.info("Initializing database tables...")
            await asyncio.wait_for(init_db(), timeout=120)
            logger.info("Database initialized successfully")
        except asyncio.TimeoutError:
            logger.error("DB init timed out after 120s, continuing without init")
        except Exception as e:
            logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)
    else:
        logger.info("Skipping DB init on startup")


@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Garment Catalog Ingestion API...")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production",
    )
