"""
Tests for monetary amount helpers
"""

from decimal import Decimal

import pytest

from accounting_core.money import amounts_equal, decimal_from_string, sum_amounts, to_amount


class TestDecimalFromString:
    """Test parsing of user-supplied amount strings"""

    def test_decimal_from_string_valid(self):
        assert decimal_from_string("123.45") == Decimal("123.45")
        assert decimal_from_string("1,234.56") == Decimal("1234.56")
        assert decimal_from_string("123,45") == Decimal("123.45")
        assert decimal_from_string("1,234") == Decimal("1234")
        assert decimal_from_string("$1,234.56") == Decimal("1234.56")
        assert decimal_from_string("€123,45") == Decimal("123.45")
        assert decimal_from_string("-123.45") == Decimal("-123.45")
        assert decimal_from_string("-$5.00") == Decimal("-5.00")
        assert decimal_from_string("  250  ") == Decimal("250")
        assert decimal_from_string(".5") == Decimal("0.5")

    def test_decimal_from_string_invalid(self):
        with pytest.raises(ValueError):
            decimal_from_string("")

        with pytest.raises(ValueError):
            decimal_from_string("not_a_number")

        with pytest.raises(ValueError):
            decimal_from_string(None)

    @pytest.mark.parametrize("value", [
        "1e3", "1.5e2", "12abc34", "NaN", "Infinity", "-inf", "1.2.3", "$", "--5", "1 000", "100.00 USD"
    ])
    def test_malformed_strings_rejected(self, value):
        with pytest.raises(ValueError):
            decimal_from_string(value)


class TestToAmount:

    def test_rounds_to_cents(self):
        assert to_amount("10.005") == Decimal("10.01")
        assert to_amount(7) == Decimal("7.00")
        assert to_amount(Decimal("0.004")) == Decimal("0.00")

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            to_amount(1.5)

    def test_non_finite_decimal_rejected(self):
        with pytest.raises(ValueError):
            to_amount(Decimal("NaN"))
        with pytest.raises(ValueError):
            to_amount(Decimal("Infinity"))

    def test_exponent_string_rejected(self):
        with pytest.raises(ValueError):
            to_amount("1e3")

    def test_sum_and_compare(self):
        assert sum_amounts(["1.004", "2.004", 3]) == Decimal("6.00")
        assert amounts_equal(Decimal("10.00"), Decimal("10.01"))
        assert not amounts_equal(Decimal("10.00"), Decimal("10.02"))
