"""
Spreadsheet Parser
Decodes an uploaded workbook (first sheet) or CSV file into RawRows.
"""
import csv
import io
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

import xlrd
from openpyxl import load_workbook

from services.errors import UnreadableFileError
from services.row_normalizer import RawRow, Scalar

logger = logging.getLogger(__name__)

WORKBOOK_EXTENSIONS = (".xlsx", ".xlsm")
LEGACY_WORKBOOK_EXTENSIONS = (".xls",)
CSV_EXTENSIONS = (".csv", ".txt")
CSV_DELIMITERS = ",;\t"
ZIP_MAGIC = b"PK\x03\x04"
# OLE2 compound document header used by legacy .xls files
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def _cell_scalar(value: Any) -> Scalar:
    """Coerce an openpyxl cell value into the RawRow scalar union."""
    if isinstance(value, bool):
        return int(value)
    if value is None or isinstance(value, (str, int, float)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def _xls_cell_scalar(cell: Any, datemode: int) -> Scalar:
    """Coerce an xlrd cell; .xls keeps every number as a float."""
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return int(cell.value)
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate_as_datetime(cell.value, datemode).isoformat()
        except (xlrd.xldate.XLDateError, ValueError, OverflowError):
            return cell.value
    if cell.ctype == xlrd.XL_CELL_NUMBER and float(cell.value).is_integer():
        return int(cell.value)
    return cell.value


def _is_blank(value: Scalar) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _unique_headers(names: Sequence[Optional[str]], filename: str) -> List[Optional[str]]:
    """Repeated header names get a ``.2``, ``.3`` suffix; the first occurrence keeps the name."""
    seen: Dict[str, int] = {}
    headers: List[Optional[str]] = []
    for name in names:
        if name is None:
            headers.append(None)
            continue
        seen[name] = seen.get(name, 0) + 1
        if seen[name] == 1:
            headers.append(name)
            continue
        renamed = f"{name}.{seen[name]}"
        while renamed in names or renamed in headers:
            renamed += "_"
        logger.warning(f"{filename}: duplicate column {name!r} renamed to {renamed!r}")
        headers.append(renamed)
    return headers


def _rows_from_matrix(matrix: Iterable[Sequence[Any]], filename: str) -> List[RawRow]:
    """First row is the header; blank-header columns and fully blank rows are dropped."""
    iterator = iter(matrix)
    header_row = next(iterator, None)
    if header_row is None:
        raise UnreadableFileError(f"{filename} has no header row", filename=filename)

    names: List[Optional[str]] = []
    for cell in header_row:
        value = _cell_scalar(cell)
        names.append(None if _is_blank(value) else str(value).strip())
    if not any(names):
        raise UnreadableFileError(f"{filename} has an empty header row", filename=filename)
    headers = _unique_headers(names, filename)

    rows: List[RawRow] = []
    for values in iterator:
        row: Dict[str, Scalar] = {}
        for index, header in enumerate(headers):
            if header is None:
                continue
            row[header] = _cell_scalar(values[index]) if index < len(values) else None
        if all(_is_blank(v) for v in row.values()):
            continue
        rows.append(row)
    return rows


def _parse_workbook(file_bytes: bytes, filename: str) -> List[RawRow]:
    try:
        workbook = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
        try:
            if not workbook.sheetnames:
                raise UnreadableFileError(f"{filename} contains no sheets", filename=filename)
            sheet = workbook[workbook.sheetnames[0]]
            return _rows_from_matrix(sheet.iter_rows(values_only=True), filename)
        finally:
            workbook.close()
    except UnreadableFileError:
        raise
    except Exception as exc:
        # openpyxl reports corrupt archives and sheet XML under many exception types
        raise UnreadableFileError(f"Could not read workbook {filename}: {exc}", filename=filename) from exc


def _parse_legacy_workbook(file_bytes: bytes, filename: str) -> List[RawRow]:
    try:
        book = xlrd.open_workbook(file_contents=file_bytes, on_demand=True)
        try:
            if book.nsheets == 0:
                raise UnreadableFileError(f"{filename} contains no sheets", filename=filename)
            sheet = book.sheet_by_index(0)
            matrix = (
                [_xls_cell_scalar(cell, book.datemode) for cell in sheet.row(index)]
                for index in range(sheet.nrows)
            )
            return _rows_from_matrix(matrix, filename)
        finally:
            book.release_resources()
    except UnreadableFileError:
        raise
    except Exception as exc:
        raise UnreadableFileError(f"Could not read workbook {filename}: {exc}", filename=filename) from exc


def _sniff_delimiter(sample: str) -> str:
    try:
        return csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
    except csv.Error:
        return ","


def _parse_csv(file_bytes: bytes, filename: str) -> List[RawRow]:
    try:
        text = file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise UnreadableFileError(f"{filename} is not valid UTF-8 text", filename=filename) from exc

    first_line = text.split("\n", 1)[0]
    reader = csv.reader(io.StringIO(text), delimiter=_sniff_delimiter(first_line))
    try:
        matrix = [row for row in reader]
    except csv.Error as exc:
        raise UnreadableFileError(f"Could not parse CSV {filename}: {exc}", filename=filename) from exc
    return _rows_from_matrix(matrix, filename)


def parse_spreadsheet(file_bytes: bytes, filename: str) -> List[RawRow]:
    """
    Decode ``file_bytes`` into RawRows (header -> scalar).

    The format is picked by extension, falling back to the ZIP (xlsx) or OLE2
    (xls) magic bytes for workbooks uploaded under a generic name. Raises UnreadableFileError on an
    empty file, a missing header row, zero data rows, or any decode failure.
    """
    filename = filename or "upload"
    if not file_bytes:
        raise UnreadableFileError(f"{filename} is empty", filename=filename)

    lowered = filename.lower()
    sniffable = not lowered.endswith(CSV_EXTENSIONS)
    if lowered.endswith(WORKBOOK_EXTENSIONS) or (sniffable and file_bytes.startswith(ZIP_MAGIC)):
        rows = _parse_workbook(file_bytes, filename)
    elif lowered.endswith(LEGACY_WORKBOOK_EXTENSIONS) or (sniffable and file_bytes.startswith(OLE2_MAGIC)):
        rows = _parse_legacy_workbook(file_bytes, filename)
    else:
        rows = _parse_csv(file_bytes, filename)

    if not rows:
        raise UnreadableFileError(f"{filename} has no data rows", filename=filename)
    logger.info(f"Parsed {len(rows)} rows from {filename}")
    return rows
