"""
Test suite for amount normalization

Every representation an imported amount can arrive in must normalize to the
same Decimal and the same two-decimal string.
"""

import pytest
from decimal import Decimal

from loan_servicing.money import normalize_amount, quantize_amount, format_amount


class DriverDecimal:
    """Stand-in for a database driver decimal type"""

    def __init__(self, text):
        self.text = text

    def to_decimal(self):
        return Decimal(self.text)


class TestNormalizeAmount:
    """Test normalize_amount"""

    @pytest.mark.parametrize("value", [
        1500, 1500.0, "1500", "1,500.00", "₱1,500.00", "PHP 1,500", " 1500.00 ",
        Decimal("1500.000"), DriverDecimal("1500.00"),
    ])
    def test_equivalent_representations(self, value):
        """Test numeric, locale string and driver decimal forms agree"""
        assert normalize_amount(value) == Decimal("1500")

    def test_float_goes_through_str(self):
        """Test floats keep their shortest repr instead of the binary expansion"""
        assert normalize_amount(0.1) == Decimal("0.1")

    def test_accounting_negative(self):
        """Test parenthesized amounts are negative"""
        assert normalize_amount("(1,234.50)") == Decimal("-1234.50")

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", True, float("nan"), "Infinity", object()])
    def test_unusable_values_return_none(self, value):
        """Test missing or unparseable input returns None"""
        assert normalize_amount(value) is None


class TestFormatAmount:
    """Test two-decimal formatting used in identity keys"""

    def test_rounds_half_up(self):
        """Test ROUND_HALF_UP at the second decimal"""
        assert quantize_amount("10.005") == Decimal("10.01")
        assert format_amount("10.004") == "10.00"

    def test_missing_formats_as_zero(self):
        """Test missing and unparseable values format as 0.00"""
        assert format_amount(None) == "0.00"
        assert format_amount("n/a") == "0.00"

    def test_negative_zero(self):
        """Test negative zero formats like zero"""
        assert format_amount("-0.001") == "0.00"

    def test_high_precision_string(self):
        """Test a high-precision decimal string formats to two places"""
        assert format_amount("12345.678901") == "12345.68"
