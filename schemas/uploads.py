"""
Response models for the admin upload and catalog endpoints.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IngestResponse(BaseModel):
    """Aggregate counts for one completed ingestion run."""

    message: str
    total: int
    success: int
    errors: int
    inserted: int
    updated: int
    session_id: Optional[str] = Field(None, alias="sessionId")
    status: str

    model_config = ConfigDict(populate_by_name=True)


class UploadHistoryEntry(BaseModel):
    id: str
    filename: Optional[str]
    uploader_id: Optional[str] = Field(None, alias="uploaderId")
    timestamp: Optional[str]
    completed_at: Optional[str] = Field(None, alias="completedAt")
    status: str
    records: int = 0
    errors: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class UploadHistoryResponse(BaseModel):
    history: List[UploadHistoryEntry]


class DashboardStats(BaseModel):
    product_count: int = Field(0, alias="productCount")
    retailer_count: int = Field(0, alias="retailerCount")
    brand_count: int = Field(0, alias="brandCount")
    recent_uploads: List[UploadHistoryEntry] = Field(default_factory=list, alias="recentUploads")

    model_config = ConfigDict(populate_by_name=True)


class Option(BaseModel):
    """Dropdown entry."""

    id: str
    name: str


class GarmentFilterRow(BaseModel):
    item_code: str = Field(..., alias="itemCode")
    retailer: str = ""
    brand: str = ""
    garment_type: str = Field("", alias="garmentType")
    occasion: str = ""

    model_config = ConfigDict(populate_by_name=True)
