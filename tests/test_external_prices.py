"""
Tests for the External Price Feed and rate limiter
"""

import pytest
from decimal import Decimal

import aiohttp

from core.external_prices import (
    BinanceTickerSource,
    CoinbaseRateSource,
    ExternalPriceFeed,
    ExternalPriceSource,
    split_symbol,
)
from core.models import ExternalPrice
from utils.exceptions import ExternalDataError
from utils.rate_limiter import TokenBucketRateLimiter
from conftest import FakeClock


class FakeResponse:
    def __init__(self, status=200, payload=None, text=''):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self):
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records requests and replays canned responses"""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def get(self, url, params=None):
        self.requests.append((url, params))
        if self.error is not None:
            raise self.error
        return self.response


class StubSource(ExternalPriceSource):
    """Source returning fixed prices or raising"""

    def __init__(self, name, prices=None, error=None):
        super().__init__('http://stub', TokenBucketRateLimiter(1000, 1000))
        self.name = name
        self.prices = prices or {}
        self.error = error
        self.calls = 0

    async def fetch(self, session, symbol):
        self.calls += 1
        if self.error is not None:
            raise ExternalDataError(self.error, source=self.name, symbol=symbol)
        price = self.prices.get(symbol)
        if price is None:
            return None
        return ExternalPrice(
            symbol=symbol,
            price=Decimal(price),
            volume_24h=Decimal('100'),
            timestamp=1.0,
            source=self.name,
        )


def make_feed(sources, clock=None, ttl=5.0):
    return ExternalPriceFeed(
        sources=sources,
        cache_ttl_sec=ttl,
        session=FakeSession(),
        clock=clock or FakeClock(0.0),
    )


class TestSplitSymbol:
    """Test exchange symbol parsing"""

    @pytest.mark.parametrize('symbol,expected', [
        ('SUIUSDT', ('SUI', 'USDT')),
        ('SUIUSDC', ('SUI', 'USDC')),
        ('ETHUSD', ('ETH', 'USD')),
        ('SUI/EUR', ('SUI', 'EUR')),
    ])
    def test_split(self, symbol, expected):
        assert split_symbol(symbol) == expected

    def test_unknown_quote(self):
        with pytest.raises(ExternalDataError):
            split_symbol('SUIEUR')


class TestExternalPriceFeed:
    """Test first-available selection and caching"""

    @pytest.mark.asyncio
    async def test_falls_back_to_next_source(self):
        failing = StubSource('primary', error='HTTP 500')
        backup = StubSource('backup', prices={'SUIUSDT': '4.25'})
        feed = make_feed([failing, backup])

        price = await feed.get_price('SUIUSDT')

        assert price.source == 'backup'
        assert price.price == Decimal('4.25')
        assert failing.calls == 1

    @pytest.mark.asyncio
    async def test_first_source_wins(self):
        primary = StubSource('primary', prices={'SUIUSDT': '4.20'})
        backup = StubSource('backup', prices={'SUIUSDT': '4.25'})
        feed = make_feed([primary, backup])

        assert (await feed.get_price('SUIUSDT')).source == 'primary'
        assert backup.calls == 0

    @pytest.mark.asyncio
    async def test_all_sources_fail(self):
        feed = make_feed([StubSource('a', error='down'), StubSource('b')])
        assert await feed.get_price('SUIUSDT') is None
        assert feed.get_cache_stats()['cached_symbols'] == 0

    @pytest.mark.asyncio
    async def test_non_positive_price_skipped(self):
        feed = make_feed([StubSource('a', prices={'SUIUSDT': '0'}), StubSource('b', prices={'SUIUSDT': '4.1'})])
        assert (await feed.get_price('SUIUSDT')).source == 'b'

    @pytest.mark.asyncio
    async def test_cache_respects_ttl(self):
        clock = FakeClock(100.0)
        source = StubSource('a', prices={'SUIUSDT': '4.25'})
        feed = make_feed([source], clock=clock, ttl=5.0)

        await feed.get_price('SUIUSDT')
        clock.advance(4.9)
        await feed.get_price('SUIUSDT')
        assert source.calls == 1

        clock.advance(0.2)
        await feed.get_price('SUIUSDT')
        assert source.calls == 2

        stats = feed.get_cache_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 2

    @pytest.mark.asyncio
    async def test_get_prices_omits_missing(self):
        feed = make_feed([StubSource('a', prices={'SUIUSDT': '4.25'})])

        prices = await feed.get_prices(['SUIUSDT', 'DEEPUSDT'])

        assert list(prices) == ['SUIUSDT']

    @pytest.mark.asyncio
    async def test_market_summary_and_clear(self):
        feed = make_feed([StubSource('a', prices={'SUIUSDT': '4.25', 'DEEPUSDT': '0.2'})])
        await feed.get_prices(['SUIUSDT', 'DEEPUSDT'])

        summary = feed.get_market_summary()
        assert summary['active_symbols'] == 2
        assert summary['total_volume'] == Decimal('200')

        feed.clear_cache()
        assert feed.get_market_summary()['active_symbols'] == 0

    @pytest.mark.asyncio
    async def test_close_leaves_shared_session_open(self):
        session = FakeSession()
        feed = ExternalPriceFeed(sources=[], session=session)
        await feed.close()
        assert session.closed is False


class TestSources:
    """Test venue payload parsing"""

    @pytest.mark.asyncio
    async def test_binance_ticker(self):
        session = FakeSession(FakeResponse(payload={'lastPrice': '4.2512', 'volume': '123456.7'}))
        source = BinanceTickerSource(base_url='https://binance.test/')

        price = await source.fetch(session, 'SUIUSDT')

        assert price.price == Decimal('4.2512')
        assert price.volume_24h == Decimal('123456.7')
        assert price.source == 'binance'
        assert session.requests == [('https://binance.test/api/v3/ticker/24hr', {'symbol': 'SUIUSDT'})]

    @pytest.mark.asyncio
    async def test_binance_malformed_payload(self):
        session = FakeSession(FakeResponse(payload={'price': '4.25'}))
        with pytest.raises(ExternalDataError):
            await BinanceTickerSource().fetch(session, 'SUIUSDT')

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', [429, 500])
    async def test_http_errors(self, status):
        session = FakeSession(FakeResponse(status=status, text='nope'))
        with pytest.raises(ExternalDataError):
            await BinanceTickerSource().fetch(session, 'SUIUSDT')

    @pytest.mark.asyncio
    async def test_transport_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError('refused'))
        with pytest.raises(ExternalDataError) as exc_info:
            await BinanceTickerSource().fetch(session, 'SUIUSDT')
        assert exc_info.value.source == 'binance'

    @pytest.mark.asyncio
    async def test_coinbase_usd_rate(self):
        session = FakeSession(FakeResponse(payload={'data': {'currency': 'SUI', 'rates': {'USD': '4.24'}}}))

        price = await CoinbaseRateSource().fetch(session, 'SUIUSDT')

        assert price.price == Decimal('4.24')
        assert price.volume_24h == Decimal('0')
        assert session.requests[0][1] == {'currency': 'SUI'}

    @pytest.mark.asyncio
    async def test_coinbase_without_usd_rate(self):
        session = FakeSession(FakeResponse(payload={'data': {'rates': {'EUR': '3.9'}}}))
        assert await CoinbaseRateSource().fetch(session, 'SUIUSDT') is None


class TestTokenBucketRateLimiter:
    """Test token bucket refill"""

    def test_burst_then_refill(self):
        clock = FakeClock(0.0)
        limiter = TokenBucketRateLimiter(rate=2.0, capacity=3.0, clock=clock)

        assert all(limiter.try_acquire() for _ in range(3))
        assert limiter.try_acquire() is False

        clock.advance(0.5)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

    def test_refill_capped_at_capacity(self):
        clock = FakeClock(0.0)
        limiter = TokenBucketRateLimiter(rate=2.0, capacity=3.0, clock=clock)
        limiter.try_acquire(3.0)

        clock.advance(100)

        assert limiter.get_available_tokens() == 3.0

    @pytest.mark.asyncio
    async def test_acquire_with_tokens_available(self):
        limiter = TokenBucketRateLimiter(rate=1.0, capacity=2.0)
        await limiter.acquire()
        assert limiter.get_available_tokens() < 2.0

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(rate=0, capacity=1)
