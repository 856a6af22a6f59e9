"""
Ingestion error taxonomy.

Row-scoped errors (``RowError``) are counted and never abort a run.
Run-scoped errors (``IngestError``) abort the run after the upload log has
been finalized, and carry the HTTP status the API should answer with.
"""
from typing import Any, Dict, Optional


class CatalogError(Exception):
    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message='{self.message}', error_code={self.error_code})"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "errorCode": self.error_code, "details": self.details}


# ---------- Store ----------

class StoreError(CatalogError):
    """A store round-trip failed."""

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        exception_details = details or {}
        if operation:
            exception_details["operation"] = operation
        super().__init__(message=message, error_code="STORE_ERROR", details=exception_details)


class StoreUnavailableError(StoreError):
    """Timeouts and connection failures: the store could not be reached."""


class StoreWriteError(StoreError):
    """The store was reached but rejected the statement (constraint, bad data)."""


# ---------- Row-scoped ----------

class RowError(CatalogError):
    def __init__(
        self,
        message: str,
        error_code: str,
        row_number: Optional[int] = None,
        item_code: Optional[str] = None,
    ):
        self.row_number = row_number
        self.item_code = item_code
        details: Dict[str, Any] = {}
        if row_number is not None:
            details["row"] = row_number
        if item_code is not None:
            details["itemCode"] = item_code
        super().__init__(message=message, error_code=error_code, status_code=422, details=details)


class MissingKeyError(RowError):
    def __init__(self, column: str, row_number: Optional[int] = None):
        self.column = column
        where = f"Row {row_number}" if row_number is not None else "Row"
        super().__init__(
            message=f"{where} is missing {column}",
            error_code="MISSING_KEY",
            row_number=row_number,
        )


class LookupFailedError(RowError):
    def __init__(self, item_code: str, reason: str, row_number: Optional[int] = None):
        self.reason = reason
        super().__init__(
            message=f"Could not look up existing record for {item_code}: {reason}",
            error_code="LOOKUP_FAILED",
            row_number=row_number,
            item_code=item_code,
        )


class WriteFailedError(RowError):
    def __init__(self, item_code: str, reason: str, row_number: Optional[int] = None):
        self.reason = reason
        super().__init__(
            message=f"Could not write record {item_code}: {reason}",
            error_code="WRITE_FAILED",
            row_number=row_number,
            item_code=item_code,
        )


# ---------- Run-scoped ----------

class IngestError(CatalogError):
    """Fatal for the whole upload."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        # Filled in by the orchestrator when the failure is caught
        self.stage: Optional[str] = None
        super().__init__(message=message, error_code=error_code, status_code=status_code, details=details)


class UnreadableFileError(IngestError):
    def __init__(self, message: str, filename: Optional[str] = None):
        details = {"filename": filename} if filename else None
        super().__init__(message=message, error_code="UNREADABLE_FILE", status_code=400, details=details)


class MissingRequiredColumnError(IngestError):
    def __init__(self, columns: list[str], found: Optional[list[str]] = None):
        self.columns = columns
        details: Dict[str, Any] = {"missing": columns}
        if found is not None:
            details["found"] = found[:20]
        super().__init__(
            message=f"File is missing required columns: {', '.join(columns)}",
            error_code="MISSING_REQUIRED_COLUMN",
            status_code=400,
            details=details,
        )


class StoreUnavailableIngestError(IngestError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="STORE_UNAVAILABLE",
            status_code=503,
            details=details,
        )
