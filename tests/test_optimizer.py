"""
Tests for the Trade-Size Optimizer
"""

import pytest
from decimal import Decimal

from core.optimizer import optimize
from core.simulator import TriangularSimulator
from utils.exceptions import DataValidationError


def parabola(peak, height=Decimal('100')):
    peak = Decimal(peak)
    return lambda x: height - (x - peak) ** 2


class TestOptimize:
    """Test ternary search behaviour"""

    def test_finds_interior_peak(self):
        result = optimize(Decimal('0.1'), Decimal('100'), parabola('30'))
        assert abs(result.amount - Decimal('30')) < Decimal('0.01')
        assert result.profit == pytest.approx(Decimal('100'), abs=Decimal('0.0001'))

    def test_never_worse_than_minimum(self):
        """Seeded with profit_fn(min_amount)"""
        profit_fn = lambda x: -x
        result = optimize(Decimal('0.1'), Decimal('100'), profit_fn)
        assert result.amount == Decimal('0.1')
        assert result.profit == Decimal('-0.1')

    def test_peak_at_upper_bound(self):
        result = optimize(Decimal('1'), Decimal('10'), lambda x: x)
        assert Decimal('10') - result.amount < Decimal('0.001')

    def test_equal_bounds(self):
        result = optimize(Decimal('5'), Decimal('5'), parabola('30'))
        assert result.amount == Decimal('5')
        assert result.iterations == 0

    def test_iteration_cap(self):
        result = optimize(Decimal('0'), Decimal('100'), parabola('30'),
                          precision=Decimal('1e-30'), max_iterations=5)
        assert result.iterations == 5

    def test_stops_at_precision(self):
        result = optimize(Decimal('0'), Decimal('1'), parabola('0.5'), precision=Decimal('0.5'))
        # 1 -> 2/3 -> 4/9 < 0.5
        assert result.iterations == 2

    def test_inverted_bounds_raise(self):
        with pytest.raises(DataValidationError):
            optimize(Decimal('10'), Decimal('1'), parabola('5'))

    def test_accepts_numeric_bounds(self):
        result = optimize(0.1, 100, parabola('30'))
        assert abs(result.amount - Decimal('30')) < Decimal('0.01')


class TestOptimizeWithSimulator:
    """Optimizer driven by the triangular profit function"""

    def test_result_beats_minimum(self, make_market_data, profitable_prices, triangle_path):
        simulator = TriangularSimulator(make_market_data(profitable_prices))
        profit_fn = simulator.profit_function(triangle_path)

        result = optimize(Decimal('0.1'), Decimal('100'), profit_fn)

        assert result.profit >= profit_fn(Decimal('0.1'))
        assert result.profit > 0

    def test_unprofitable_path_stays_at_minimum_loss(self, make_market_data, baseline_prices, triangle_path):
        simulator = TriangularSimulator(make_market_data(baseline_prices))
        profit_fn = simulator.profit_function(triangle_path)

        result = optimize(Decimal('0.1'), Decimal('100'), profit_fn)

        assert result.profit <= 0
        assert result.profit >= profit_fn(Decimal('0.1'))
