"""
test_fixed_point.py - Unit tests for the Decimal fixed-point helpers

Tests:
- to_decimal conversion (floats through str, rejects garbage)
- mul_div rounding direction
- clamp_fraction bounds and NaN handling
"""

import pytest
from decimal import Decimal, ROUND_UP

from accountant import to_decimal, quantize, mul_div, mul_div_down, mul_div_up, clamp_fraction


class TestToDecimal:

    def test_float_goes_through_str(self):
        """0.1 becomes Decimal('0.1'), not its binary expansion."""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_decimal_passthrough(self):
        d = Decimal("1.25")
        assert to_decimal(d) is d

    def test_int_and_str(self):
        assert to_decimal(7) == Decimal("7")
        assert to_decimal("3.5") == Decimal("3.5")

    def test_rejects_non_numbers(self):
        with pytest.raises(ValueError):
            to_decimal("abc")
        with pytest.raises(ValueError):
            to_decimal(True)


class TestMulDiv:

    def test_exact_result_unchanged(self):
        assert mul_div(Decimal("10"), Decimal("3"), Decimal("2")) == Decimal("15")

    def test_down_and_up_bracket_the_exact_value(self):
        """1/3 at 2 places: down gives 0.33, up gives 0.34."""
        assert mul_div_down(Decimal("1"), Decimal("1"), Decimal("3"), places=2) == Decimal("0.33")
        assert mul_div_up(Decimal("1"), Decimal("1"), Decimal("3"), places=2) == Decimal("0.34")

    def test_explicit_rounding_argument(self):
        assert mul_div(Decimal("2"), Decimal("1"), Decimal("3"), ROUND_UP, 0) == Decimal("1")

    def test_division_by_zero(self):
        with pytest.raises(ZeroDivisionError):
            mul_div(Decimal("1"), Decimal("1"), Decimal("0"))

    def test_default_places_is_eighteen(self):
        result = mul_div_down(Decimal("1"), Decimal("1"), Decimal("3"))
        assert result == Decimal("0.333333333333333333")


class TestQuantize:

    def test_infinity_passes_through(self):
        inf = Decimal("Infinity")
        assert quantize(inf) == inf

    def test_rounds_down_by_default(self):
        assert quantize(Decimal("1.239"), 2) == Decimal("1.23")


class TestClampFraction:

    @pytest.mark.parametrize("raw,expected", [
        (Decimal("-0.5"), Decimal("0")),
        (Decimal("0"), Decimal("0")),
        (Decimal("0.3"), Decimal("0.3")),
        (Decimal("1"), Decimal("1")),
        (Decimal("1.7"), Decimal("1")),
        (Decimal("Infinity"), Decimal("1")),
    ])
    def test_clamps_into_unit_interval(self, raw, expected):
        assert clamp_fraction(raw) == expected

    def test_nan_is_zero(self):
        assert clamp_fraction(Decimal("NaN")) == Decimal("0")

    def test_float_input(self):
        assert clamp_fraction(0.25) == Decimal("0.25")

    def test_quantized_down_to_wad(self):
        value = Decimal("0.1234567890123456789999")
        assert clamp_fraction(value) == Decimal("0.123456789012345678")
