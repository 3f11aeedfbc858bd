from decimal import Decimal

import pytest

from storefront.core.errors import AmountFormatError
from storefront.gateways.base import format_amount, parse_amount


@pytest.mark.parametrize("cents,text", [(0, "0.00"), (5, "0.05"), (4500, "45.00"), (123456, "1234.56")])
def test_format_amount(cents, text):
    assert format_amount(cents) == text


@pytest.mark.parametrize("bad", [-1, 12.5, True, "100", None])
def test_format_amount_rejects_non_cents(bad):
    with pytest.raises(AmountFormatError):
        format_amount(bad)


def test_parse_amount_accepts_strings_ints_and_decimals():
    assert parse_amount("45.00") == 4500
    assert parse_amount("45.5") == 4550
    assert parse_amount(" 3 ") == 300
    assert parse_amount(12) == 1200
    assert parse_amount(Decimal("0.99")) == 99


@pytest.mark.parametrize("bad", ["1.234", "-1.00", "abc", "NaN", "Infinity", "", 1.5, False, "1e999999999"])
def test_parse_amount_rejects(bad):
    with pytest.raises(AmountFormatError):
        parse_amount(bad)
