from decimal import Decimal

import pytest

from warranty_admin.models import PriceType
from warranty_admin.services.pricing import format_display, to_display, to_storage


def test_fixed_amount_round_trip_keeps_cents():
    stored = to_storage(12.34, PriceType.FIXED_AMOUNT)
    assert stored == 1234
    assert to_display(stored, PriceType.FIXED_AMOUNT) == Decimal("12.34")


@pytest.mark.parametrize(
    "display, expected",
    [
        ("9.99", 999),
        (Decimal("0.005"), 1),
        (Decimal("0.004"), 0),
        ("10.125", 1013),
        (0, 0),
    ],
)
def test_fixed_amount_rounds_half_up(display, expected):
    assert to_storage(display, PriceType.FIXED_AMOUNT) == expected


def test_percentage_is_stored_as_whole_points():
    assert to_storage(10, PriceType.PERCENTAGE) == 10
    assert to_display(10, PriceType.PERCENTAGE) == 10


def test_percentage_truncates_fractions():
    assert to_storage("12.9", PriceType.PERCENTAGE) == 12
    assert to_display(to_storage("12.9", "PERCENTAGE"), "PERCENTAGE") == Decimal("12")


def test_format_display():
    assert format_display(999, PriceType.FIXED_AMOUNT) == "9.99"
    assert format_display(1500, PriceType.FIXED_AMOUNT) == "15.00"
    assert format_display(15, PriceType.PERCENTAGE) == "15%"


def test_unknown_price_type_is_rejected():
    with pytest.raises(ValueError):
        to_storage(1, "BOGUS")


@pytest.mark.parametrize("display", ["1e30", Decimal("1e999999")])
def test_out_of_range_amounts_raise_value_error(display):
    with pytest.raises(ValueError):
        to_storage(display, PriceType.FIXED_AMOUNT)
