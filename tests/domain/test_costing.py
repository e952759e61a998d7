"""
Unit tests for the weighted-average cost calculator.

Verifies:
- The blended cost formula and its rounding
- Banker's rounding at the configured precision
- Rejection of negative, zero-total and float inputs
- Variance reporting against the previous cost
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from inventory_kernel.domain.costing import WeightedAverageCostCalculator
from inventory_kernel.exceptions import InvalidCostInputError


@pytest.fixture
def calculator():
    return WeightedAverageCostCalculator()


class TestRecompute:
    """Tests for recompute()."""

    def test_equal_quantities_average(self, calculator):
        assert calculator.recompute(10, Decimal("10"), 10, Decimal("12")) == Decimal("11.0000")

    def test_weighted_by_quantity(self, calculator):
        # (30*2 + 10*6) / 40 = 3
        assert calculator.recompute(30, Decimal("2"), 10, Decimal("6")) == Decimal("3.0000")

    def test_empty_stock_takes_received_cost(self, calculator):
        assert calculator.recompute(0, Decimal("99"), 5, Decimal("4.25")) == Decimal("4.2500")

    def test_rounds_half_even(self):
        calc = WeightedAverageCostCalculator(places=2)
        # 1*1.00 + 1*1.01 = 2.01 / 2 = 1.005 -> 1.00 (half-even)
        assert calc.recompute(1, Decimal("1.00"), 1, Decimal("1.01")) == Decimal("1.00")
        # 1.015 -> 1.02
        assert calc.recompute(1, Decimal("1.00"), 1, Decimal("1.03")) == Decimal("1.02")

    def test_repeating_fraction_is_quantized(self, calculator):
        assert calculator.recompute(2, Decimal("1"), 1, Decimal("2")) == Decimal("1.3333")

    def test_integer_costs_accepted(self, calculator):
        assert calculator.recompute(1, 2, 1, 4) == Decimal("3.0000")

    def test_zero_total_quantity_raises(self, calculator):
        with pytest.raises(InvalidCostInputError) as exc_info:
            calculator.recompute(0, Decimal("1"), 0, Decimal("1"))
        assert exc_info.value.code == "INVALID_COST_INPUT"

    @pytest.mark.parametrize(
        "args",
        [
            (-1, Decimal("1"), 1, Decimal("1")),
            (1, Decimal("-1"), 1, Decimal("1")),
            (1, Decimal("1"), -1, Decimal("1")),
            (1, Decimal("1"), 1, Decimal("-0.01")),
        ],
    )
    def test_negative_inputs_raise(self, calculator, args):
        with pytest.raises(InvalidCostInputError):
            calculator.recompute(*args)

    @pytest.mark.parametrize(
        "args",
        [
            (1, 1.5, 1, Decimal("1")),
            (1, Decimal("1"), 1, 2.0),
            (1.0, Decimal("1"), 1, Decimal("1")),
            (True, Decimal("1"), 1, Decimal("1")),
            (1, Decimal("NaN"), 1, Decimal("1")),
        ],
    )
    def test_non_decimal_inputs_raise(self, calculator, args):
        with pytest.raises(InvalidCostInputError):
            calculator.recompute(*args)

    def test_negative_places_rejected(self):
        with pytest.raises(ValueError):
            WeightedAverageCostCalculator(places=-1)

    @settings(max_examples=200, deadline=None)
    @given(
        current_qty=st.integers(min_value=0, max_value=10_000),
        current_cost=st.decimals(min_value=0, max_value=1000, places=4),
        received_qty=st.integers(min_value=1, max_value=10_000),
        received_cost=st.decimals(min_value=0, max_value=1000, places=4),
    )
    def test_result_lies_between_inputs(self, current_qty, current_cost, received_qty, received_cost):
        calc = WeightedAverageCostCalculator()
        result = calc.recompute(current_qty, current_cost, received_qty, received_cost)
        low = min(current_cost, received_cost) if current_qty else received_cost
        high = max(current_cost, received_cost) if current_qty else received_cost
        assert low - Decimal("0.0001") <= result <= high + Decimal("0.0001")


class TestEvaluate:
    """Tests for evaluate() and variance()."""

    def test_reports_variance(self, calculator):
        outcome = calculator.evaluate(10, Decimal("10"), 10, Decimal("12"))
        assert outcome.new_cost == Decimal("11.0000")
        assert outcome.new_quantity == 20
        assert outcome.variance == Decimal("1.0000")
        assert outcome.variance_percent == Decimal("10.00")
        assert outcome.significant is False

    def test_significant_above_threshold(self, calculator):
        outcome = calculator.evaluate(10, Decimal("10"), 10, Decimal("14"))
        assert outcome.variance_percent == Decimal("20.00")
        assert outcome.significant is True

    def test_negative_variance_is_significant_by_magnitude(self, calculator):
        outcome = calculator.evaluate(10, Decimal("10"), 10, Decimal("6"))
        assert outcome.variance == Decimal("-2.0000")
        assert outcome.significant is True

    def test_zero_previous_cost_never_significant(self, calculator):
        variance, percent, significant = calculator.variance(Decimal("0"), Decimal("5"))
        assert variance == Decimal("5.0000")
        assert percent == Decimal("0.00")
        assert significant is False

    def test_threshold_is_configurable(self):
        calc = WeightedAverageCostCalculator(significant_variance_percent=Decimal("5"))
        assert calc.evaluate(10, Decimal("10"), 10, Decimal("12")).significant is True


class TestPriceVariance:
    """Receipt cost against the purchase-order price."""

    def test_recorded_above_five_percent(self, calculator):
        variance, percent, recordable = calculator.price_variance(Decimal("10"), Decimal("10.60"))
        assert variance == Decimal("0.6000")
        assert percent == Decimal("6.00")
        assert recordable is True

    def test_exactly_five_percent_is_not_recorded(self, calculator):
        _, percent, recordable = calculator.price_variance(Decimal("10"), Decimal("9.50"))
        assert percent == Decimal("-5.00")
        assert recordable is False

    def test_independent_of_cost_variance_threshold(self):
        calc = WeightedAverageCostCalculator(
            significant_variance_percent=Decimal("50"), price_variance_percent=Decimal("1")
        )
        assert calc.price_variance(Decimal("10"), Decimal("10.20"))[2] is True
        assert calc.variance(Decimal("10"), Decimal("10.20"))[2] is False
