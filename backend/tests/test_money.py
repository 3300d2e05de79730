# Overview: Pytest coverage for fixed-point money helpers.

from decimal import Decimal

import pytest

from billing.errors import InvalidAmount
from billing.money import money_str, money_sum, percent_of, subtract, to_money


class TestToMoney:
    def test_rounds_half_up_to_cents(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money("10.004") == Decimal("10.00")

    def test_float_keeps_printed_value(self):
        assert to_money(0.1) + to_money(0.2) == Decimal("0.30")

    def test_negative_rejected_by_default(self):
        with pytest.raises(InvalidAmount):
            to_money("-1")

    def test_negative_allowed_when_asked(self):
        assert to_money("-1.5", allow_negative=True) == Decimal("-1.50")

    @pytest.mark.parametrize("value", ["abc", None, True, "NaN", "Infinity"])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(InvalidAmount):
            to_money(value)

    def test_rejects_amounts_over_column_capacity(self):
        with pytest.raises(InvalidAmount):
            to_money("10000000000")

    @pytest.mark.parametrize("value", ["1e30", "-1e30", 10**40])
    def test_huge_magnitudes_rejected_before_rounding(self, value):
        with pytest.raises(InvalidAmount):
            to_money(value, allow_negative=True)


class TestArithmetic:
    def test_percent_of(self):
        assert percent_of(Decimal("300.00"), Decimal("10")) == Decimal("30.00")
        assert percent_of(Decimal("19.99"), Decimal("18")) == Decimal("3.60")

    def test_subtract_never_goes_negative(self):
        assert subtract(Decimal("5.00"), Decimal("5.00")) == Decimal("0.00")
        with pytest.raises(InvalidAmount):
            subtract(Decimal("5.00"), Decimal("5.01"))

    def test_money_sum(self):
        assert money_sum([Decimal("0.10")] * 3) == Decimal("0.30")
        assert money_sum([]) == Decimal("0.00")

    def test_money_str(self):
        assert money_str(Decimal("7")) == "7.00"
        assert money_str(None) is None
