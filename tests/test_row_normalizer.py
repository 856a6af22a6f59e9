import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.errors import MissingKeyError
from services.row_normalizer import normalize_price, normalize_row


def test_known_columns_are_lifted_and_raw_row_kept():
    raw = {
        "FE_Item_Code": "  JR001 ",
        "Title": "Black Dress",
        "Brand": "Joseph Ribkoff",
        "Occasions": "Party, Wedding",
        "Colour_Family": "Black",
        "Fabric_Weight": "Heavy",
    }

    record = normalize_row(raw, row_number=1)

    assert record["item_code"] == "JR001"
    assert record["title"] == "Black Dress"
    assert record["brand"] == "Joseph Ribkoff"
    assert record["occasion"] == "Party, Wedding"
    assert record["color_family"] == "Black"
    # unknown columns survive verbatim
    assert record["attributes"] == raw
    assert "pattern" not in record


def test_header_matching_is_case_sensitive():
    record = normalize_row({"FE_Item_Code": "A1", "brand": "lowercase header"})
    assert "brand" not in record
    assert record["attributes"]["brand"] == "lowercase header"


@pytest.mark.parametrize("raw", [{}, {"FE_Item_Code": None}, {"FE_Item_Code": "   "}, {"Title": "x"}])
def test_missing_or_blank_item_code_is_a_row_error(raw):
    with pytest.raises(MissingKeyError) as exc:
        normalize_row(raw, row_number=7)
    assert exc.value.row_number == 7
    assert exc.value.error_code == "MISSING_KEY"


def test_numeric_item_codes_are_stringified():
    assert normalize_row({"FE_Item_Code": 1001.0})["item_code"] == "1001"
    assert normalize_row({"FE_Item_Code": 42})["item_code"] == "42"


def test_custom_key_column():
    record = normalize_row({"SKU": "S-9"}, key_column="SKU")
    assert record["item_code"] == "S-9"


@pytest.mark.parametrize(
    "given, expected",
    [
        ("£49.99", "49.99"),
        (" $1,200 ", "1,200"),
        ("€ 15", "15"),
        ("49.99", "49.99"),
        ("call for price", "call for price"),
        ("£", "£"),
        ("12.3.4", "12.3.4"),
        (49.5, 49.5),
        (None, None),
    ],
)
def test_normalize_price(given, expected):
    assert normalize_price(given) == expected


def test_price_strip_keeps_raw_value_in_attributes():
    record = normalize_row({"FE_Item_Code": "P1", "Price": "£19.00"})
    assert record["price"] == "19.00"
    assert record["attributes"]["Price"] == "£19.00"


def test_known_columns_keep_their_uploaded_scalar_type():
    raw = {
        "FE_Item_Code": "A",
        "Stock": 5,
        "Price": 49.5,
        "Size": 10,
        "Title": "  ",
        "Material": None,
        "Brand": "Frank Lyman",
    }

    record = normalize_row(raw)

    assert record["stock"] == 5 and isinstance(record["stock"], int)
    assert record["price"] == 49.5
    assert record["size"] == 10
    assert record["title"] == "  "
    assert record["material"] is None
    assert record["brand"] == "Frank Lyman"
