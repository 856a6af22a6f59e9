"""
Centralized configuration helpers for catalog ingestion.
"""
from __future__ import annotations

import os
from typing import Any, Optional


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Column in the uploaded sheet that carries the retailer-assigned item code.
ITEM_CODE_COLUMN: str = os.getenv("ITEM_CODE_COLUMN") or "FE_Item_Code"

# Rows per bulk upsert call.
INGEST_BATCH_SIZE: int = _env_int("INGEST_BATCH_SIZE", 50, minimum=1)

# Upper bound for any single store round-trip (lookup, upsert, ledger write).
STORE_TIMEOUT_SECONDS: float = _env_float("STORE_TIMEOUT_SECONDS", 30.0)

# One IN (...) lookup per upload instead of one lookup per row.
RECONCILE_PREFETCH: bool = _env_flag("RECONCILE_PREFETCH", False)

MAX_UPLOAD_BYTES: int = _env_int("MAX_UPLOAD_BYTES", 50 * 1024 * 1024, minimum=1)

DEFAULT_UPLOADER_ID: str = os.getenv("DEFAULT_UPLOADER_ID") or "admin"

UPLOAD_HISTORY_LIMIT: int = _env_int("UPLOAD_HISTORY_LIMIT", 20, minimum=1)

# Spreadsheet header -> GarmentRecord attribute. Matched exactly (case-sensitive).
KNOWN_COLUMNS: dict[str, str] = {
    "Title": "title",
    "Brand": "brand",
    "Garment_Type": "garment_type",
    "Garment_Type_Text": "garment_type_text",
    "Retailer": "retailer",
    "Occasions": "occasion",
    "Size": "size",
    "Colour_Family": "color_family",
    "Price": "price",
    "Stock": "stock",
    "Image_URL": "image_url",
    "Product_URL": "product_url",
    "Material": "material",
    "Pattern": "pattern",
}


def sanitize_item_code(value: Optional[Any]) -> Optional[str]:
    """Canonical item code: stringified and trimmed, None when blank."""
    if value is None:
        return None
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet cells hold numeric codes as floats (1001.0 -> "1001").
        value = int(value)
    text = str(value).strip()
    return text or None


def resolve_uploader_id(*candidates: Optional[Any]) -> str:
    """
    Pick the first usable uploader identity from candidates, otherwise fall back to DEFAULT_UPLOADER_ID.
    """
    for candidate in candidates:
        if candidate is None:
            continue
        text = str(candidate).strip()
        if text:
            return text
    return DEFAULT_UPLOADER_ID
