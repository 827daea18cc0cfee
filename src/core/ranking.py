"""
Confidence Scoring & Opportunity Ranking

Confidence (tie-breaker, 0-1):
    triangular:  0.5 + min(profit_ratio * 10, 0.3) + liquidity bonus, cap 0.95
    cross-venue: 0.3 + min(discrepancy * 20, 0.4) + min(volume / 1e6, 0.2), cap 0.85

Gas filter (shared by both detectors and the ranker):
    gross_profit - gas_estimate > min_profit_threshold * trade_amount

Ranking: profit ratio descending, then confidence descending.
"""

from decimal import Decimal
from typing import Iterable, List

from config.constants import (
    CROSS_VENUE_CONFIDENCE_BASE,
    CROSS_VENUE_CONFIDENCE_CEILING,
    CROSS_VENUE_DISCREPANCY_BONUS_CAP,
    CROSS_VENUE_DISCREPANCY_BONUS_SCALE,
    CROSS_VENUE_VOLUME_BONUS_CAP,
    CROSS_VENUE_VOLUME_BONUS_DIVISOR,
    TRIANGULAR_CONFIDENCE_BASE,
    TRIANGULAR_CONFIDENCE_CEILING,
    TRIANGULAR_LIQUIDITY_BONUS,
    TRIANGULAR_PROFIT_BONUS_CAP,
    TRIANGULAR_PROFIT_BONUS_SCALE,
)
from core.models import CrossVenueOpportunity, Opportunity, TriangularOpportunity
from utils.exceptions import StrategyError
from utils.helpers import is_profitable_after_gas
from utils.logger import get_logger


logger = get_logger(__name__)


def triangular_confidence(profit_ratio: Decimal, liquidity_resolved: bool = True) -> float:
    """Confidence for a triangular candidate"""
    confidence = TRIANGULAR_CONFIDENCE_BASE
    confidence += max(0.0, min(float(profit_ratio) * TRIANGULAR_PROFIT_BONUS_SCALE, TRIANGULAR_PROFIT_BONUS_CAP))
    if liquidity_resolved:
        confidence += TRIANGULAR_LIQUIDITY_BONUS
    return min(confidence, TRIANGULAR_CONFIDENCE_CEILING)


def cross_venue_confidence(discrepancy: Decimal, external_volume: Decimal) -> float:
    """Confidence for a cross-venue candidate"""
    confidence = CROSS_VENUE_CONFIDENCE_BASE
    confidence += min(float(discrepancy) * CROSS_VENUE_DISCREPANCY_BONUS_SCALE, CROSS_VENUE_DISCREPANCY_BONUS_CAP)
    confidence += max(0.0, min(float(external_volume) / CROSS_VENUE_VOLUME_BONUS_DIVISOR, CROSS_VENUE_VOLUME_BONUS_CAP))
    return min(confidence, CROSS_VENUE_CONFIDENCE_CEILING)


class OpportunityRanker:
    """Merges detector output, applies the gas filter and sorts"""

    def __init__(self, min_profit_threshold: Decimal):
        self.min_profit_threshold = min_profit_threshold

    def passes_gas_filter(self, opportunity: Opportunity) -> bool:
        if isinstance(opportunity, (TriangularOpportunity, CrossVenueOpportunity)):
            return is_profitable_after_gas(
                opportunity.expected_profit,
                opportunity.gas_estimate,
                self.min_profit_threshold,
                opportunity.trade_amount,
            )
        raise StrategyError(
            f"Unknown opportunity type {type(opportunity).__name__}",
            error_code='UNKNOWN_OPPORTUNITY'
        )

    def rank(self, candidates: Iterable[Opportunity]) -> List[Opportunity]:
        """
        Filter and sort candidates from every detector.

        Returns:
            Accepted candidates, best first
        """
        accepted = []
        for opportunity in candidates:
            if self.passes_gas_filter(opportunity):
                accepted.append(opportunity)
            else:
                logger.debug(f"Opportunity {opportunity.id} dropped by gas filter")

        accepted.sort(key=lambda o: (o.profit_ratio, o.confidence), reverse=True)
        return accepted
