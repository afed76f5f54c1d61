import pytest

from statement_pipeline.amounts import format_minor_units, parse_price_to_cents, to_minor_units
from statement_pipeline.categories import (
    CATEGORY_LABELS,
    Category,
    category_label,
    fallback_domain,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("9.90", 990),
        ("9,90", 990),
        ("9,9", 990),
        (" 12 ", 1200),
        ("0.05", 5),
        (".5", 50),
        ("1 234.50", 123450),
    ],
)
def test_parse_price_to_cents_accepts_user_input(text, expected):
    assert parse_price_to_cents(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "abc", "9.999", "9.9.9", "-3", "1,2,3", "."])
def test_parse_price_to_cents_rejects_garbage(text):
    assert parse_price_to_cents(text) is None


def test_to_minor_units_is_half_up_and_float_safe():
    assert to_minor_units("0.005") == 1
    assert to_minor_units(0.005) == 1
    assert to_minor_units(2.675) == 268
    assert to_minor_units("12.90") == 1290
    assert to_minor_units(None) is None
    assert to_minor_units("NaN") is None
    assert to_minor_units(True) is None


def test_format_minor_units():
    assert format_minor_units(990) == "CHF 9.90"
    assert format_minor_units(-123456) == "-CHF 1,234.56"


def test_every_category_has_a_label():
    assert set(CATEGORY_LABELS) == set(Category)
    assert category_label("dining") == "Restaurants & Dining"
    assert category_label(None) == "Uncategorized"
    assert category_label("legacy") == "legacy"


def test_twint_fallback_domain():
    assert fallback_domain("TWINT *Pizzeria Da Mario") == "twint.ch"
    assert fallback_domain("Coop Zurich") is None
    assert fallback_domain(None) is None
