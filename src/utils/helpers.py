"""
Decimal Arithmetic Helpers for the Arbitrage Engine

Provides:
- Safe Decimal coercion (never through binary float repr)
- Truncation toward zero (profit is never rounded up)
- Statistics over Decimal series (mean, population stddev, Sharpe)
- The profit-after-gas acceptance rule shared by detectors and ranker

All arithmetic that feeds a trading decision goes through these helpers.
"""

from decimal import Decimal, ROUND_DOWN, InvalidOperation, localcontext
from typing import Any, Optional, Sequence

from config.constants import DECIMAL_PLACES
from utils.exceptions import DataValidationError


_QUANTUM = Decimal(1).scaleb(-DECIMAL_PLACES)
WORKING_PRECISION = 50
ZERO = Decimal('0')
ONE = Decimal('1')


# ============================================================================
# 1. COERCION & ROUNDING
# ============================================================================

def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert a number-like value to Decimal.

    Floats are converted through str() so 0.1 becomes Decimal('0.1'),
    not its binary expansion.

    Args:
        value: int, float, str or Decimal
        field_name: Name used in the error message

    Returns:
        Decimal value (may be non-finite if the input was inf/nan)

    Raises:
        DataValidationError: If value cannot be parsed as a number
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise DataValidationError(
            f"{field_name} must be numeric, got bool",
            error_code='INVALID_NUMBER'
        )
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise DataValidationError(
            f"{field_name} is not a valid number: {value!r}",
            error_code='INVALID_NUMBER',
            original_error=e
        )


def truncate(value: Decimal, places: int = DECIMAL_PLACES) -> Decimal:
    """
    Truncate a Decimal toward zero to a fixed number of places.

    Args:
        value: Decimal to truncate
        places: Decimal places to keep

    Returns:
        Truncated Decimal (non-finite values are returned unchanged)
    """
    if not value.is_finite():
        return value
    quantum = _QUANTUM if places == DECIMAL_PLACES else Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        # quantize raises if the result needs more digits than prec
        ctx.prec = WORKING_PRECISION
        ctx.rounding = ROUND_DOWN
        return value.quantize(quantum, rounding=ROUND_DOWN)


def is_finite_number(value: Any) -> bool:
    """True if value is a finite int/float/Decimal."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return to_decimal(value).is_finite()
    except DataValidationError:
        return False


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Clamp value into [lower, upper]."""
    return max(lower, min(value, upper))


# ============================================================================
# 2. STATISTICS
# ============================================================================

def decimal_mean(values: Sequence[Decimal]) -> Decimal:
    """Arithmetic mean, 0 for an empty series."""
    if not values:
        return ZERO
    return sum(values, ZERO) / Decimal(len(values))


def decimal_stddev(values: Sequence[Decimal]) -> Decimal:
    """
    Population standard deviation.

    Returns 0 for fewer than two samples.
    """
    if len(values) < 2:
        return ZERO
    mean = decimal_mean(values)
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / Decimal(len(values))
    return variance.sqrt()


def sharpe_ratio(returns: Sequence[Decimal], risk_free_rate: Decimal = ZERO) -> Decimal:
    """
    Sharpe ratio = mean(excess returns) / stddev(excess returns)

    Args:
        returns: Return series (net profit per trade)
        risk_free_rate: Subtracted from each return

    Returns:
        Sharpe ratio, or 0 with fewer than 2 samples or zero variance
    """
    if len(returns) < 2:
        return ZERO
    excess = [r - risk_free_rate for r in returns]
    std = decimal_stddev(excess)
    if std.is_zero():
        return ZERO
    return decimal_mean(excess) / std


def max_drawdown(profits: Sequence[Decimal]) -> Decimal:
    """
    Largest peak-to-running-sum gap over a profit sequence.

    The peak starts at zero, so an initial loss counts as drawdown.
    """
    peak = ZERO
    running = ZERO
    worst = ZERO
    for profit in profits:
        running += profit
        peak = max(peak, running)
        worst = max(worst, peak - running)
    return worst


# ============================================================================
# 3. PROFITABILITY RULE
# ============================================================================

def is_profitable_after_gas(
    gross_profit: Decimal,
    gas_cost: Decimal,
    min_profit_threshold: Decimal,
    trade_amount: Optional[Decimal] = None
) -> bool:
    """
    Check that profit clears gas plus a size-proportional margin.

    accepted  <=>  gross_profit - gas_cost > min_profit_threshold * trade_amount

    Args:
        gross_profit: Expected profit before gas
        gas_cost: Gas/cost estimate
        min_profit_threshold: Profit ratio margin
        trade_amount: Trade size the margin scales with. When omitted the
                      threshold is used as an absolute minimum.

    Returns:
        True if the candidate clears the rule
    """
    required = min_profit_threshold if trade_amount is None else min_profit_threshold * trade_amount
    return gross_profit - gas_cost > required
