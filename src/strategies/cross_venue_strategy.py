"""
Cross-Venue Arbitrage Strategy

Compares the reference venue price of a monitored pair with the price of
the same asset on an external venue.

Detection:
=========
1. Convert the external price into the reference quote asset if needed
   (unknown conversion rate -> skip)
2. discrepancy = |reference - external| / external
   (recorded on the pair on every check)
3. Skip if discrepancy < min_profit_threshold
4. Buy on the cheaper venue, sell on the other
5. size = min(10% of reference 24h volume, base_liquidity * (gap * 100 + 1))
6. profit = |sell_value - buy_value| - size * fee
7. Gas filter, then an absolute minimum expected profit

No order book is consulted; 24h volume stands in for depth.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import Any, Dict, List, Mapping, Optional, Tuple

from config.constants import (
    CROSS_VENUE_BASE_LIQUIDITY,
    CROSS_VENUE_GAS,
    CROSS_VENUE_LIQUIDITY_SHARE,
    CROSS_VENUE_TRADING_FEE,
    STABLECOIN_CONVERSION_RATES,
)
from core.models import (
    CrossVenueOpportunity,
    ExternalPrice,
    MonitoredPair,
    PriceSnapshot,
    TradeDirection,
)
from core.ranking import cross_venue_confidence
from strategies.base_strategy import ArbitrageStrategy
from utils.helpers import ONE, WORKING_PRECISION, ZERO, decimal_mean, is_profitable_after_gas, to_decimal, truncate
from utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class CrossVenueParams:
    """Fee, liquidity-proxy and gas policy for cross-venue detection"""
    trading_fee: Decimal = CROSS_VENUE_TRADING_FEE
    base_liquidity: Decimal = CROSS_VENUE_BASE_LIQUIDITY
    liquidity_share: Decimal = CROSS_VENUE_LIQUIDITY_SHARE
    gas_estimate: Decimal = CROSS_VENUE_GAS
    conversion_rates: Mapping[Tuple[str, str], Decimal] = field(
        default_factory=lambda: dict(STABLECOIN_CONVERSION_RATES)
    )


class CrossVenueStrategy(ArbitrageStrategy):
    """Detects reference/external price gaps on monitored pairs"""

    name = "cross-venue"

    def __init__(
        self,
        market_data,
        pairs: List[MonitoredPair],
        min_profit_threshold: Decimal,
        min_expected_profit: Decimal = Decimal('0.05'),
        params: Optional[CrossVenueParams] = None,
        **kwargs
    ):
        """
        Args:
            market_data: MarketDataProvider instance
            pairs: Monitored pairs from the registry
            min_profit_threshold: Minimum discrepancy and gas-margin ratio
            min_expected_profit: Absolute profit floor
            params: Fee/liquidity/gas policy override
        """
        super().__init__(market_data, min_profit_threshold, **kwargs)
        self.pairs = list(pairs)
        self.min_expected_profit = to_decimal(min_expected_profit, 'min_expected_profit')
        self.params = params or CrossVenueParams()

    def conversion_rate(self, pair: MonitoredPair) -> Optional[Decimal]:
        """Rate from the external quote asset to the reference quote asset"""
        if not pair.conversion_required:
            return ONE
        return self.params.conversion_rates.get((pair.external_quote, pair.quote_asset))

    def detect(
        self,
        pair: MonitoredPair,
        reference: PriceSnapshot,
        external: ExternalPrice,
        now: Optional[float] = None
    ) -> Optional[CrossVenueOpportunity]:
        """
        Compare one reference price with one external price.

        Side effect: pair.last_price_check and pair.price_discrepancy are
        updated whenever both prices are usable, whatever the outcome.

        Returns:
            CrossVenueOpportunity, or None if there is no tradeable gap
        """
        now = time.time() if now is None else now

        rate = self.conversion_rate(pair)
        if rate is None:
            logger.debug(f"No conversion rate {pair.external_quote}->{pair.quote_asset}, skipping {pair.external_symbol}")
            return None

        reference_price = reference.price
        if not reference_price.is_finite() or reference_price <= ZERO:
            return None

        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION

            adjusted_external = external.price * rate
            if not adjusted_external.is_finite() or adjusted_external <= ZERO:
                return None

            discrepancy = truncate(abs(reference_price - adjusted_external) / adjusted_external)
            pair.last_price_check = now
            pair.price_discrepancy = discrepancy

            if discrepancy < self.min_profit_threshold:
                return None

            if reference_price < adjusted_external:
                direction = TradeDirection.BUY_REFERENCE
                buy_price, sell_price = reference_price, adjusted_external
            else:
                direction = TradeDirection.SELL_REFERENCE
                buy_price, sell_price = adjusted_external, reference_price

            available_liquidity = reference.volume_24h * self.params.liquidity_share
            max_profitable_amount = self.params.base_liquidity * (discrepancy * 100 + ONE)
            trade_amount = truncate(min(available_liquidity, max_profitable_amount))
            if trade_amount <= ZERO:
                return None

            expected_profit = truncate(
                abs(trade_amount * sell_price - trade_amount * buy_price)
                - trade_amount * self.params.trading_fee
            )

        gas = self.params.gas_estimate
        if not is_profitable_after_gas(expected_profit, gas, self.min_profit_threshold, trade_amount):
            logger.debug(f"{pair.external_symbol} gap {discrepancy} does not clear gas at size {trade_amount}")
            return None

        if expected_profit < self.min_expected_profit:
            logger.info(
                f"{pair.external_symbol} expected profit {expected_profit:.6f} below minimum "
                f"{self.min_expected_profit}"
            )
            return None

        opportunity = CrossVenueOpportunity(
            id=self._new_id(pair.instrument.symbol, pair.external_symbol),
            instrument=pair.instrument,
            external_symbol=pair.external_symbol,
            direction=direction,
            reference_price=reference_price,
            external_price=adjusted_external,
            discrepancy=discrepancy,
            trade_amount=trade_amount,
            expected_profit=expected_profit,
            profit_ratio=discrepancy,
            gas_estimate=gas,
            confidence=cross_venue_confidence(discrepancy, external.volume_24h),
            created_at=now,
            deadline=self._deadline(now),
        )
        logger.info(
            f"🔀 Cross-venue opportunity {pair.instrument.symbol} vs {pair.external_symbol}: "
            f"{direction.value}, gap {float(discrepancy) * 100:.3f}%, profit {expected_profit:.6f}",
            extra={'opportunity_id': opportunity.id}
        )
        return opportunity

    async def scan_pair(self, pair: MonitoredPair) -> Optional[CrossVenueOpportunity]:
        reference = self.market_data.get_price(pair.instrument.symbol)
        if reference is None:
            logger.debug(f"No reference price for {pair.instrument.symbol}")
            return None
        external = await self.market_data.get_external_price(pair.external_symbol)
        if external is None:
            return None
        return self.detect(pair, reference, external)

    async def find_opportunities(self) -> List[CrossVenueOpportunity]:
        results = await asyncio.gather(*(self.scan_pair(pair) for pair in self.pairs))
        opportunities = [o for o in results if o is not None]
        opportunities.sort(key=lambda o: o.expected_profit, reverse=True)
        return opportunities

    def get_statistics(self) -> Dict[str, Any]:
        """
        Monitoring statistics over all pairs

        Returns:
            total_pairs, active_pairs (non-zero discrepancy),
            average_discrepancy and last_update
        """
        discrepancies = [p.price_discrepancy for p in self.pairs]
        return {
            'total_pairs': len(self.pairs),
            'active_pairs': sum(1 for d in discrepancies if d > ZERO),
            'average_discrepancy': decimal_mean(discrepancies),
            'last_update': max((p.last_price_check for p in self.pairs), default=0.0),
        }

    def get_status(self):
        status = super().get_status()
        status['pairs'] = len(self.pairs)
        return status
