# --- models + engine for the garment catalog ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    JSON, String, Text, Integer, DateTime, func, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from typing import Any, Dict, Optional
import logging, os, time, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

if DATABASE_URL:
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg takes 'ssl', not libpq's 'sslmode'
    _ssl_required = "sslmode=require" in DATABASE_URL or "sslmode=verify-full" in DATABASE_URL
    for _param in ("?sslmode=require", "&sslmode=require", "?sslmode=verify-full", "&sslmode=verify-full"):
        DATABASE_URL = DATABASE_URL.replace(_param, "")

    _connect_args: Dict[str, Any] = {
        "server_settings": {"application_name": "garment_catalog_ingest"},
        "command_timeout": 60,
        "timeout": 30,
    }
    if _ssl_required:
        _connect_args["ssl"] = "require"

    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_timeout=20,
        connect_args=_connect_args,
    )
else:
    DATABASE_URL = "sqlite+aiosqlite:///:memory:"
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
        if "@" not in url:
            return url
    except Exception:
        pass
    return "******"

logger = logging.getLogger(__name__)
logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# JSONB on Postgres, plain JSON elsewhere (sqlite in dev/tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")
# Single uploaded cell (str, int or float); None is stored as SQL NULL, not JSON null
ScalarType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")

UPLOAD_STATUSES = ("processing", "success", "partial", "failed")

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class UploadSession(Base):
    __tablename__ = "upload_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    uploader_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="processing")
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    details: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('processing','success','partial','failed')",
            name="ck_upload_logs_status",
        ),
        CheckConstraint(
            "success_count >= 0 AND error_count >= 0",
            name="ck_upload_logs_counts",
        ),
    )


class GarmentRecord(Base):
    __tablename__ = "garments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # Retailer-assigned business key; upserts conflict on it
    item_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    title: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    brand: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    garment_type: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    garment_type_text: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    retailer: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    occasion: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    size: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    color_family: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    # Display data; malformed prices are kept as uploaded
    price: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    stock: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    image_url: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    product_url: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    material: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)
    pattern: Mapped[Optional[Any]] = mapped_column(ScalarType, nullable=True)

    # Every uploaded column, verbatim
    attributes: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)

    # Session that last wrote this row (lookup only, no FK)
    upload_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_garments_upload_id', GarmentRecord.upload_id)
Index('ix_garments_brand', GarmentRecord.brand)
Index('ix_garments_retailer', GarmentRecord.retailer)
Index('ix_upload_logs_created_at', UploadSession.created_at)
# -------------------------------------------------------------------
# init helpers
# -------------------------------------------------------------------
async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def check_db_health() -> Dict[str, Any]:
    start = time.time()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "latencyMs": int((time.time() - start) * 1000)}
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}

async def get_pool_status() -> Dict[str, Any]:
    pool = engine.pool
    status: Dict[str, Any] = {"class": type(pool).__name__}
    for attr in ("size", "checkedin", "checkedout", "overflow"):
        fn = getattr(pool, attr, None)
        if callable(fn):
            try:
                status[attr] = fn()
            except Exception:
                status[attr] = None
    return status
