"""
Trade-Size Optimizer

Ternary search for the trade size that maximizes a profit function on a
bounded interval. Slippage grows with size, so profit is expected to rise
then fall; unimodality is assumed but not verified. On a curve with
several peaks the search may settle on a local one.

The best (amount, profit) seen is seeded with profit_fn(min_amount), so the
result is never worse than trading the minimum amount.
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Callable

from config.constants import OPTIMIZER_MAX_ITERATIONS, OPTIMIZER_PRECISION
from utils.exceptions import DataValidationError
from utils.helpers import WORKING_PRECISION, to_decimal


@dataclass(frozen=True)
class OptimizationResult:
    amount: Decimal
    profit: Decimal
    iterations: int = 0


def optimize(
    min_amount,
    max_amount,
    profit_fn: Callable[[Decimal], Decimal],
    precision=OPTIMIZER_PRECISION,
    max_iterations: int = OPTIMIZER_MAX_ITERATIONS
) -> OptimizationResult:
    """
    Find the trade size in [min_amount, max_amount] with the largest profit.

    Args:
        min_amount: Lower bound (also the seed evaluation)
        max_amount: Upper bound
        profit_fn: Pure function amount -> profit
        precision: Stop once the interval is narrower than this
        max_iterations: Hard cap on narrowing steps

    Returns:
        OptimizationResult with the best amount and profit seen

    Raises:
        DataValidationError: If min_amount > max_amount
    """
    left = to_decimal(min_amount, 'min_amount')
    right = to_decimal(max_amount, 'max_amount')
    precision = to_decimal(precision, 'precision')
    if left > right:
        raise DataValidationError(
            f"min_amount ({left}) exceeds max_amount ({right})",
            error_code='INVALID_BOUNDS'
        )

    best_amount = left
    best_profit = profit_fn(left)
    iterations = 0

    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        for iterations in range(1, max_iterations + 1):
            if right - left < precision:
                iterations -= 1
                break

            third = (right - left) / 3
            mid1 = left + third
            mid2 = right - third

            profit1 = profit_fn(mid1)
            profit2 = profit_fn(mid2)

            if profit1 > best_profit:
                best_amount, best_profit = mid1, profit1
            if profit2 > best_profit:
                best_amount, best_profit = mid2, profit2

            # Drop the third on the losing side
            if profit1 > profit2:
                right = mid2
            else:
                left = mid1

    return OptimizationResult(amount=best_amount, profit=best_profit, iterations=iterations)
