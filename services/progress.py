"""
Immutable run counters threaded through the ingestion stages.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Tuple

from services.errors import RowError

# Row errors kept verbatim in the upload log details; the rest are only counted
MAX_REPORTED_ROW_ERRORS = 100


def _row_error_entry(error: RowError) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"errorCode": error.error_code, "message": error.message}
    entry.update(error.details)
    return entry


@dataclass(frozen=True)
class BatchResult:
    """What the Batch Writer managed to write for one call."""

    succeeded: int = 0
    failed: int = 0
    failed_item_codes: Tuple[str, ...] = ()
    inserted: int = 0
    updated: int = 0
    row_errors: Tuple[Dict[str, Any], ...] = ()

    def __add__(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            failed_item_codes=self.failed_item_codes + other.failed_item_codes,
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            row_errors=self.row_errors + other.row_errors,
        )

    def with_failure(self, error: RowError) -> "BatchResult":
        codes = self.failed_item_codes
        if error.item_code is not None:
            codes = codes + (error.item_code,)
        return replace(
            self,
            failed=self.failed + 1,
            failed_item_codes=codes,
            row_errors=self.row_errors + (_row_error_entry(error),),
        )


@dataclass(frozen=True)
class ProgressState:
    success: int = 0
    errors: int = 0
    inserted: int = 0
    updated: int = 0
    failed_item_codes: Tuple[str, ...] = ()
    row_errors: Tuple[Dict[str, Any], ...] = field(default=())

    def with_row_error(self, error: RowError) -> "ProgressState":
        codes = self.failed_item_codes
        if error.item_code is not None:
            codes = codes + (error.item_code,)
        return replace(
            self,
            errors=self.errors + 1,
            failed_item_codes=codes,
            row_errors=self.row_errors + (_row_error_entry(error),),
        )

    def with_successes(self, count: int) -> "ProgressState":
        return replace(self, success=self.success + count)

    def merge(self, result: BatchResult) -> "ProgressState":
        return ProgressState(
            success=self.success + result.succeeded,
            errors=self.errors + result.failed,
            inserted=self.inserted + result.inserted,
            updated=self.updated + result.updated,
            failed_item_codes=self.failed_item_codes + result.failed_item_codes,
            row_errors=self.row_errors + result.row_errors,
        )

    def details(self) -> Dict[str, Any]:
        """Summary stored on the upload log."""
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "failedItemCodes": list(self.failed_item_codes[:MAX_REPORTED_ROW_ERRORS]),
            "rowErrors": list(self.row_errors[:MAX_REPORTED_ROW_ERRORS]),
            "rowErrorsTruncated": len(self.row_errors) > MAX_REPORTED_ROW_ERRORS,
        }
