"""
Test Configuration Module
Provides fixtures and shared test utilities
"""

import pytest
import sys
import os
import time
from decimal import Decimal

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from core.market_data import MarketDataProvider
from core.models import (
    ExternalPrice,
    Instrument,
    PriceSnapshot,
    RiskLimits,
    TriangularOpportunity,
    TriangularPath,
)


class StaticMarketData(MarketDataProvider):
    """In-memory market data provider with fixed snapshots"""

    def __init__(self, instruments, prices, external=None):
        self.instruments = list(instruments)
        self.prices = dict(prices)
        self.external = dict(external or {})
        self.refresh_count = 0

    def get_price(self, symbol):
        return self.prices.get(symbol)

    def get_all_instruments(self):
        return list(self.instruments)

    async def get_external_price(self, symbol):
        return self.external.get(symbol)

    async def refresh(self):
        self.refresh_count += 1


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def snapshot(price, volume='1000000'):
    price = Decimal(str(price))
    return PriceSnapshot(
        price=price,
        bid=price,
        ask=price,
        volume_24h=Decimal(volume),
        timestamp=time.time(),
    )


@pytest.fixture
def instruments():
    """SUI/USDC, USDC/DEEP and DEEP/SUI instruments"""
    return {
        'SUI_USDC': Instrument(base='SUI', quote='USDC', symbol='SUI_USDC'),
        'USDC_DEEP': Instrument(base='USDC', quote='DEEP', symbol='USDC_DEEP'),
        'DEEP_SUI': Instrument(base='DEEP', quote='SUI', symbol='DEEP_SUI'),
    }


@pytest.fixture
def triangle_path(instruments):
    """SUI -> USDC -> DEEP -> SUI"""
    return TriangularPath(
        assets=('SUI', 'USDC', 'DEEP'),
        instruments=(instruments['SUI_USDC'], instruments['USDC_DEEP'], instruments['DEEP_SUI']),
    )


@pytest.fixture
def baseline_prices():
    """No-arbitrage baseline: 4.25 * 1.0 * 0.236 ~= 1.003 before costs"""
    return {
        'SUI_USDC': snapshot('4.25'),
        'USDC_DEEP': snapshot('1.0'),
        'DEEP_SUI': snapshot('0.236'),
    }


@pytest.fixture
def profitable_prices():
    """4.25 * 1.0 * 0.25 = 1.0625 before costs"""
    return {
        'SUI_USDC': snapshot('4.25'),
        'USDC_DEEP': snapshot('1.0'),
        'DEEP_SUI': snapshot('0.25'),
    }


@pytest.fixture
def make_market_data(instruments):
    """Factory for StaticMarketData over the test instruments"""
    def _make(prices, external=None):
        return StaticMarketData(instruments.values(), prices, external)
    return _make


@pytest.fixture
def external_price():
    """Factory for ExternalPrice values"""
    def _make(symbol, price, volume='500000'):
        return ExternalPrice(
            symbol=symbol,
            price=Decimal(str(price)),
            volume_24h=Decimal(volume),
            timestamp=time.time(),
            source='test',
        )
    return _make


@pytest.fixture
def risk_limits():
    """Default risk limits"""
    return RiskLimits(
        max_position_size=Decimal('50'),
        max_daily_loss=Decimal('100'),
        max_slippage=Decimal('0.03'),
        stop_loss_ratio=Decimal('0.02'),
        max_concurrent_trades=3,
    )


@pytest.fixture
def clock():
    """Clock fixed at 2026-01-01 12:00:00 UTC"""
    return FakeClock(1767268800.0)


@pytest.fixture
def make_opportunity(triangle_path):
    """Factory for triangular opportunities"""
    counter = {'n': 0}

    def _make(trade_amount='10', profit_ratio='0.05', confidence=0.9, expected_profit=None,
              gas='0.11', deadline=None):
        counter['n'] += 1
        amount = Decimal(str(trade_amount)) if not isinstance(trade_amount, Decimal) else trade_amount
        ratio = Decimal(str(profit_ratio)) if not isinstance(profit_ratio, Decimal) else profit_ratio
        if expected_profit is None:
            profit = amount * ratio if amount.is_finite() and ratio.is_finite() else Decimal('1')
        else:
            profit = Decimal(str(expected_profit))
        now = time.time()
        return TriangularOpportunity(
            id=f"triangular-test-{counter['n']}",
            path=triangle_path,
            trade_amount=amount,
            expected_profit=profit,
            profit_ratio=ratio,
            gas_estimate=Decimal(gas),
            confidence=confidence,
            created_at=now,
            deadline=now + 30 if deadline is None else deadline,
        )
    return _make
