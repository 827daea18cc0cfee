"""
Tests for confidence scoring and opportunity ranking
"""

from dataclasses import dataclass

import pytest
from decimal import Decimal

from core.models import Opportunity, OpportunityKind
from core.ranking import OpportunityRanker, cross_venue_confidence, triangular_confidence
from utils.exceptions import StrategyError


@dataclass(frozen=True, kw_only=True)
class UnrankedOpportunity(Opportunity):
    """Variant the ranker has no gas rule for"""

    @property
    def kind(self):
        return OpportunityKind.TRIANGULAR

    @property
    def instruments(self):
        return ()


class TestConfidence:
    """Test confidence heuristics"""

    def test_triangular(self):
        assert triangular_confidence(Decimal('0.01')) == pytest.approx(0.7)

    def test_triangular_without_liquidity_bonus(self):
        assert triangular_confidence(Decimal('0.01'), liquidity_resolved=False) == pytest.approx(0.6)

    def test_triangular_profit_bonus_capped(self):
        assert triangular_confidence(Decimal('0.5')) == pytest.approx(0.9)

    def test_triangular_negative_ratio_gets_no_bonus(self):
        assert triangular_confidence(Decimal('-0.1')) == pytest.approx(0.6)

    def test_cross_venue(self):
        assert cross_venue_confidence(Decimal('0.01'), Decimal('100000')) == pytest.approx(0.6)

    def test_cross_venue_ceiling(self):
        assert cross_venue_confidence(Decimal('0.05'), Decimal('5000000')) == pytest.approx(0.85)


class TestOpportunityRanker:
    """Test gas filtering and ordering"""

    def test_gas_filter_depends_on_size(self, make_opportunity):
        """profit 1 - gas 0.5 must exceed 0.005 * size"""
        ranker = OpportunityRanker(Decimal('0.005'))

        small = make_opportunity(trade_amount='10', expected_profit='1', gas='0.5')
        large = make_opportunity(trade_amount='100', expected_profit='1', gas='0.5')

        assert ranker.passes_gas_filter(small) is True
        assert ranker.passes_gas_filter(large) is False

    def test_rank_orders_by_ratio_then_confidence(self, make_opportunity):
        ranker = OpportunityRanker(Decimal('0.005'))
        low = make_opportunity(profit_ratio='0.02', confidence=0.99)
        high_sure = make_opportunity(profit_ratio='0.05', confidence=0.9)
        high_unsure = make_opportunity(profit_ratio='0.05', confidence=0.6)

        ranked = ranker.rank([low, high_unsure, high_sure])

        assert [o.id for o in ranked] == [high_sure.id, high_unsure.id, low.id]

    def test_rank_drops_filtered(self, make_opportunity):
        ranker = OpportunityRanker(Decimal('0.005'))
        kept = make_opportunity()
        dropped = make_opportunity(expected_profit='0.1', gas='0.5')

        assert ranker.rank([dropped, kept]) == [kept]

    def test_unknown_variant_rejected(self):
        ranker = OpportunityRanker(Decimal('0.005'))
        unranked = UnrankedOpportunity(
            id='unranked',
            trade_amount=Decimal('1'),
            expected_profit=Decimal('1'),
            profit_ratio=Decimal('1'),
            gas_estimate=Decimal('0'),
            confidence=0.5,
        )
        with pytest.raises(StrategyError):
            ranker.rank([unranked])
