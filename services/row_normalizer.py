"""
Row Normalizer
Maps one raw spreadsheet row (arbitrary headers) onto the GarmentRecord shape.
"""
import re
from typing import Any, Dict, Mapping, Optional, Union

from services.errors import MissingKeyError
from settings import ITEM_CODE_COLUMN, KNOWN_COLUMNS, sanitize_item_code

Scalar = Union[str, int, float, None]
RawRow = Mapping[str, Scalar]

# Currency symbols stripped from the Price column before storage
CURRENCY_GLYPHS = "£$€¥₹₩₽¢"
_GLYPH_TABLE = str.maketrans("", "", CURRENCY_GLYPHS)
_NUMERIC_PRICE = re.compile(r"^[+-]?(\d{1,3}(,\d{3})+|\d+)?(\.\d+)?$")


def normalize_price(value: Scalar) -> Scalar:
    """
    Best-effort currency strip: "£49.99" -> "49.99", " $1,200 " -> "1,200".
    Anything that still isn't number-shaped afterwards is returned untouched.
    """
    if value is None or isinstance(value, (int, float)):
        return value
    text = str(value)
    stripped = text.translate(_GLYPH_TABLE).replace("\u00a0", " ").strip()
    if stripped and any(ch.isdigit() for ch in stripped) and _NUMERIC_PRICE.match(stripped):
        return stripped
    return text


def normalize_row(raw_row: RawRow, row_number: Optional[int] = None, key_column: str = ITEM_CODE_COLUMN) -> Dict[str, Any]:
    """
    Build the canonical record for one row.

    Every uploaded column is kept verbatim under ``attributes``; the
    well-known columns are additionally lifted into their own fields by
    exact header name, keeping the uploaded scalar type. Raises MissingKeyError when the business key is
    absent or blank after trimming. Pure: no store access, no clock.
    """
    item_code = sanitize_item_code(raw_row.get(key_column))
    if item_code is None:
        raise MissingKeyError(key_column, row_number=row_number)

    record: Dict[str, Any] = {"item_code": item_code, "attributes": dict(raw_row)}
    for column, field in KNOWN_COLUMNS.items():
        if column not in raw_row:
            continue
        value = raw_row[column]
        if field == "price":
            value = normalize_price(value)
        record[field] = value

    return record
