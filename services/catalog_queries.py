"""
Read-side helpers for the admin dashboard and filter dropdowns.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from database import GarmentRecord, UploadSession
from services.storage import StorageService, storage

logger = logging.getLogger(__name__)

RECENT_UPLOADS_ON_DASHBOARD = 5


def _display(value: Any) -> str:
    """Stored cells may be numbers; dropdowns and filters show them as text."""
    if value is None:
        return ""
    return str(value).strip()


def _unique_options(values: Iterable[Any]) -> List[Dict[str, str]]:
    """Case-insensitive unique ``{id, name}`` options, sorted by name. First spelling seen wins."""
    seen: Dict[str, Dict[str, str]] = {}
    for value in values:
        name = _display(value)
        if name and name.lower() not in seen:
            seen[name.lower()] = {"id": name, "name": name}
    return sorted(seen.values(), key=lambda option: option["name"].lower())


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def format_upload(row: Dict[str, Any]) -> Dict[str, Any]:
    """Upload log row as shown in the history table."""
    return {
        "id": row["id"],
        "filename": row.get("filename"),
        "uploaderId": row.get("uploader_id"),
        "timestamp": _timestamp(row.get("created_at")),
        "completedAt": _timestamp(row.get("completed_at")),
        "status": row.get("status"),
        "records": row.get("success_count") or 0,
        "errors": row.get("error_count") or 0,
        "details": row.get("details") or {},
    }


class CatalogQueries:
    def __init__(self, store: Optional[StorageService] = None):
        self.store = store or storage

    async def _column(self, field: str) -> List[Any]:
        rows = await self.store.select_columns(GarmentRecord, field)
        return [row[field] for row in rows]

    async def brands(self) -> List[Dict[str, str]]:
        return _unique_options(await self._column("brand"))

    async def garment_types(self) -> List[Dict[str, str]]:
        return _unique_options(await self._column("garment_type"))

    async def retailers(self) -> List[Dict[str, str]]:
        return _unique_options(await self._column("retailer"))

    async def occasions(self) -> List[Dict[str, str]]:
        # Occasions is a comma-separated list per garment
        values = []
        for raw in await self._column("occasion"):
            values.extend(_display(raw).split(","))
        return _unique_options(values)

    async def item_codes(self) -> List[Dict[str, str]]:
        rows = await self.store.select_columns(GarmentRecord, "item_code", "title")
        options: Dict[str, Dict[str, str]] = {}
        for row in rows:
            code = str(row["item_code"]).strip()
            if not code or code in options:
                continue
            title = _display(row.get("title"))
            options[code] = {"id": code, "name": f"{code} - {title}" if title else code}
        return sorted(options.values(), key=lambda option: option["id"])

    async def garments(self) -> List[Dict[str, str]]:
        """Filter projection: one entry per garment with the dropdown fields."""
        rows = await self.store.select_columns(
            GarmentRecord, "item_code", "retailer", "brand", "garment_type", "occasion",
        )
        return [
            {
                "itemCode": row["item_code"],
                "retailer": _display(row.get("retailer")),
                "brand": _display(row.get("brand")),
                "garmentType": _display(row.get("garment_type")),
                "occasion": _display(row.get("occasion")),
            }
            for row in rows
        ]

    async def dashboard_stats(self) -> Dict[str, Any]:
        product_count = await self.store.count(GarmentRecord)
        rows = await self.store.select_columns(GarmentRecord, "item_code", "retailer", "brand")
        retailers = {_display(r.get("retailer")).lower() for r in rows} - {""}
        brands = {_display(r.get("brand")).lower() for r in rows} - {""}
        uploads = await self.store.find_recent(UploadSession, limit=RECENT_UPLOADS_ON_DASHBOARD)
        logger.info(f"Dashboard stats: {product_count} products, {len(retailers)} retailers, {len(brands)} brands")
        return {
            "productCount": product_count,
            "retailerCount": len(retailers),
            "brandCount": len(brands),
            "recentUploads": [format_upload(row) for row in uploads],
        }


catalog_queries = CatalogQueries()
