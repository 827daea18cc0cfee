"""
Triangular Simulator - Three-Leg Cycle Profit Estimation

Simulates converting a start amount around a triangular path
(A -> B -> C -> A) with a size-dependent slippage model and a flat
per-leg trading fee.

Slippage Model:
==============
For each leg, using the amount entering that leg:
    slippage = base_slippage * (1 + amount / reference_liquidity)
    amount   = amount * leg_price * (1 - slippage) * (1 - fee)

Leg price is the instrument price (quote per base) when selling the base
asset, and its inverse when buying the base asset.

Numeric Semantics:
=================
- Decimal arithmetic throughout (50 significant digits)
- Every intermediate amount is truncated toward zero to 18 places
- Missing or non-positive prices mean "no opportunity" (None), not an error

The pure core (simulate_with_prices) performs no I/O so the optimizer can
call it many times per path.
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Callable, Optional, Sequence

from config.constants import (
    BASE_SLIPPAGE,
    REFERENCE_LIQUIDITY,
    TRIANGULAR_TRADING_FEE,
)
from core.models import Instrument, PriceSnapshot, TriangularPath
from utils.exceptions import DataValidationError
from utils.helpers import ONE, WORKING_PRECISION, ZERO, to_decimal, truncate
from utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class SimulationParams:
    """Slippage and fee policy for triangular simulation"""
    base_slippage: Decimal = BASE_SLIPPAGE
    reference_liquidity: Decimal = REFERENCE_LIQUIDITY
    trading_fee: Decimal = TRIANGULAR_TRADING_FEE


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of one simulated cycle"""
    profit: Decimal
    profit_ratio: Decimal
    end_amount: Decimal


def leg_price(from_asset: str, to_asset: str, instrument: Instrument, price: Decimal) -> Optional[Decimal]:
    """
    Conversion rate for one leg (units of to_asset per unit of from_asset).

    Returns None if the instrument does not connect the two assets or the
    price is not positive.
    """
    if price is None or not price.is_finite() or price <= ZERO:
        return None
    if instrument.base == from_asset and instrument.quote == to_asset:
        return price
    if instrument.base == to_asset and instrument.quote == from_asset:
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            return truncate(ONE / price)
    return None


def simulate_with_prices(
    trade_amount: Decimal,
    leg_prices: Sequence[Decimal],
    params: SimulationParams = SimulationParams()
) -> SimulationResult:
    """
    Run the slippage/fee chain over already-resolved leg prices.

    Args:
        trade_amount: Start amount (> 0)
        leg_prices: Conversion rate of each leg, in path order
        params: Slippage and fee policy

    Returns:
        SimulationResult with profit, profit_ratio and end_amount
    """
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        fee_factor = ONE - params.trading_fee
        amount = trade_amount

        for rate in leg_prices:
            slippage = params.base_slippage * (ONE + amount / params.reference_liquidity)
            amount = truncate(amount * rate * (ONE - slippage) * fee_factor)

        profit = amount - trade_amount
        return SimulationResult(
            profit=profit,
            profit_ratio=truncate(profit / trade_amount),
            end_amount=amount,
        )


class TriangularSimulator:
    """
    Simulates triangular cycles against the current market snapshot.

    Prices are read from the market data provider; the arithmetic is
    delegated to simulate_with_prices().
    """

    def __init__(self, market_data, params: Optional[SimulationParams] = None):
        """
        Args:
            market_data: MarketDataProvider supplying PriceSnapshots
            params: Slippage/fee policy override
        """
        self.market_data = market_data
        self.params = params or SimulationParams()

    def resolve_leg_prices(self, path: TriangularPath) -> Optional[list]:
        """
        Look up the conversion rate of every leg.

        Returns:
            List of 3 Decimal rates, or None if any price is missing
        """
        if len(path.instruments) != 3:
            return None

        rates = []
        for from_asset, to_asset, instrument in path.legs():
            snapshot: Optional[PriceSnapshot] = self.market_data.get_price(instrument.symbol)
            if snapshot is None:
                logger.debug(f"No price for {instrument.symbol}, skipping {path.label}")
                return None
            rate = leg_price(from_asset, to_asset, instrument, snapshot.price)
            if rate is None:
                logger.debug(f"Unusable price for {instrument.symbol} on {path.label}")
                return None
            rates.append(rate)
        return rates

    def simulate(self, path: TriangularPath, trade_amount) -> Optional[SimulationResult]:
        """
        Simulate a cycle starting with trade_amount of path.assets[0].

        Raises:
            DataValidationError: If trade_amount is not a positive number

        Returns:
            SimulationResult, or None if any leg price is unavailable
        """
        amount = to_decimal(trade_amount, 'trade_amount')
        if not amount.is_finite() or amount <= ZERO:
            raise DataValidationError(
                f"trade_amount must be positive, got {trade_amount}",
                error_code='INVALID_AMOUNT',
                details={'path': path.label}
            )

        rates = self.resolve_leg_prices(path)
        if rates is None:
            return None
        return simulate_with_prices(amount, rates, self.params)

    def profit_function(self, path: TriangularPath) -> Optional[Callable[[Decimal], Decimal]]:
        """
        Build a profit function over trade size for the optimizer.

        Prices are resolved once so every evaluation sees the same snapshot.

        Returns:
            Callable amount -> profit, or None if any price is missing
        """
        rates = self.resolve_leg_prices(path)
        if rates is None:
            return None
        params = self.params

        def profit_at(amount: Decimal) -> Decimal:
            return simulate_with_prices(amount, rates, params).profit

        return profit_at
