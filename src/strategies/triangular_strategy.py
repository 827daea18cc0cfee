"""
Triangular Arbitrage Strategy

For every registered path (A -> B -> C -> A):
1. Probe: simulate a 1-unit cycle; skip unless its profit ratio reaches
   the minimum threshold
2. Optimize: ternary search for the most profitable size in
   [min_trade_amount, max_trade_amount]
3. Filter: net profit after gas must exceed threshold * trade size
4. Score: confidence from the optimized profit ratio

Gas estimate = base gas + per-leg gas * 3 legs.
"""

import time
from decimal import Decimal
from typing import List, Optional

from config.constants import (
    TRIANGULAR_BASE_GAS,
    TRIANGULAR_GAS_PER_LEG,
    TRIANGULAR_PROBE_AMOUNT,
)
from core.models import TriangularOpportunity, TriangularPath
from core.optimizer import optimize
from core.ranking import triangular_confidence
from core.simulator import TriangularSimulator
from strategies.base_strategy import ArbitrageStrategy
from utils.exceptions import DataValidationError
from utils.helpers import ZERO, is_profitable_after_gas, to_decimal, truncate
from utils.logger import get_logger


logger = get_logger(__name__)


def estimate_gas(legs: int = 3) -> Decimal:
    return TRIANGULAR_BASE_GAS + TRIANGULAR_GAS_PER_LEG * legs


class TriangularStrategy(ArbitrageStrategy):
    """Detects profitable three-leg cycles on the reference venue"""

    name = "triangular"

    def __init__(
        self,
        market_data,
        registry,
        min_profit_threshold: Decimal,
        min_trade_amount: Decimal = Decimal('0.1'),
        max_trade_amount: Decimal = Decimal('100'),
        simulator: Optional[TriangularSimulator] = None,
        **kwargs
    ):
        """
        Args:
            market_data: MarketDataProvider instance
            registry: PathRegistry with the candidate paths
            min_profit_threshold: Probe ratio and gas-margin threshold
            min_trade_amount: Lower optimizer bound
            max_trade_amount: Upper optimizer bound
            simulator: Simulator override (defaults to standard slippage/fees)
        """
        super().__init__(market_data, min_profit_threshold, **kwargs)
        self.registry = registry
        self.min_trade_amount = to_decimal(min_trade_amount, 'min_trade_amount')
        self.max_trade_amount = to_decimal(max_trade_amount, 'max_trade_amount')
        self.simulator = simulator or TriangularSimulator(market_data)

    def analyze_path(self, path: TriangularPath) -> Optional[TriangularOpportunity]:
        """
        Evaluate one path against the current snapshot.

        Returns:
            TriangularOpportunity, or None if the path is not profitable or
            any leg price is missing
        """
        profit_fn = self.simulator.profit_function(path)
        if profit_fn is None:
            return None

        probe_ratio = profit_fn(TRIANGULAR_PROBE_AMOUNT) / TRIANGULAR_PROBE_AMOUNT
        if probe_ratio < self.min_profit_threshold:
            return None

        result = optimize(self.min_trade_amount, self.max_trade_amount, profit_fn)
        if result.profit <= ZERO:
            return None

        gas = estimate_gas(len(path.instruments))
        if not is_profitable_after_gas(result.profit, gas, self.min_profit_threshold, result.amount):
            logger.debug(
                f"Path {path.label} profit {result.profit} does not clear gas {gas} "
                f"at size {result.amount}"
            )
            return None

        profit_ratio = truncate(result.profit / result.amount)
        created_at = time.time()
        opportunity = TriangularOpportunity(
            id=self._new_id(*path.assets),
            path=path,
            trade_amount=result.amount,
            expected_profit=result.profit,
            profit_ratio=profit_ratio,
            gas_estimate=gas,
            confidence=triangular_confidence(profit_ratio),
            created_at=created_at,
            deadline=self._deadline(created_at),
        )
        logger.info(
            f"🔺 Triangular opportunity {path.label}: size {result.amount:.4f}, "
            f"profit {result.profit:.6f} ({float(profit_ratio) * 100:.3f}%)",
            extra={'opportunity_id': opportunity.id, 'path': path.label}
        )
        return opportunity

    async def find_opportunities(self) -> List[TriangularOpportunity]:
        opportunities = []
        for path in self.registry.paths:
            try:
                opportunity = self.analyze_path(path)
            except DataValidationError as e:
                logger.warning(f"Skipping path {path.label}: {e}")
                continue
            if opportunity is not None:
                opportunities.append(opportunity)

        opportunities.sort(key=lambda o: o.profit_ratio, reverse=True)
        return opportunities

    def get_status(self):
        status = super().get_status()
        status['paths'] = len(self.registry.paths)
        return status
