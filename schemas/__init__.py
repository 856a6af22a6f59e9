"""
API response schemas.
"""

from .uploads import (
    DashboardStats,
    GarmentFilterRow,
    IngestResponse,
    Option,
    UploadHistoryEntry,
    UploadHistoryResponse,
)

__all__ = [
    "DashboardStats",
    "GarmentFilterRow",
    "IngestResponse",
    "Option",
    "UploadHistoryEntry",
    "UploadHistoryResponse",
]
