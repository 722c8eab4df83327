from decimal import Decimal

import pytest

from agri_ledger.money import format_naira, quantize_major, to_major, to_minor


def test_to_major_divides_by_100_and_rounds_half_up():
    assert to_major(15000000) == Decimal("150000.00")
    assert to_major(1) == Decimal("0.01")
    assert to_major("12345") == Decimal("123.45")
    # 0.5 kobo rounds away from zero
    assert to_major(Decimal("0.5")) == Decimal("0.01")
    assert to_major(Decimal("-0.5")) == Decimal("-0.01")


def test_to_major_treats_none_as_zero():
    assert to_major(None) == Decimal("0.00")


def test_to_minor_rounds_half_up_to_whole_kobo():
    assert to_minor(Decimal("150000.00")) == 15000000
    assert to_minor("1.005") == 101
    assert to_minor(0.1) == 10


@pytest.mark.parametrize("minor", [0, 1, 99, 100, 12345, 15000000, -250])
def test_whole_kobo_survive_a_round_trip(minor):
    assert to_minor(to_major(minor)) == minor


def test_quantize_major_does_not_scale():
    assert quantize_major("1,234.5") == Decimal("1234.50")
    assert quantize_major(7) == Decimal("7.00")


@pytest.mark.parametrize("bad", ["", "abc", True, [1], "NaN"])
def test_invalid_amounts_raise_value_error(bad):
    with pytest.raises(ValueError):
        to_major(bad)


def test_format_naira():
    assert format_naira(Decimal("1234.5")) == "₦1,234.50"
    assert format_naira(Decimal("-20")) == "-₦20.00"
    assert format_naira(None) == "₦0.00"
