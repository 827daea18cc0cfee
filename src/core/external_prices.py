"""
External Price Feed - First-Available, Cached Venue Prices

Fetches the price of an asset on independent venues for cross-venue
comparison.

Selection:
=========
- Sources are tried in configured order; the first that returns a price wins
- Results are cached per symbol for a short TTL (default 5s)
- Every failure (HTTP error, timeout, malformed payload) becomes "no price"

Sources:
=======
- BinanceTickerSource: /api/v3/ticker/24hr (price + 24h base volume)
- CoinbaseRateSource: /v2/exchange-rates (USD rate only, no volume)

Each source owns a token bucket so repeated scans stay inside public API
limits.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from config.constants import (
    BINANCE_API_URL,
    BINANCE_RATE_LIMIT,
    COINBASE_API_URL,
    COINBASE_RATE_LIMIT,
    EXTERNAL_PRICE_CACHE_TTL_SEC,
    EXTERNAL_REQUEST_TIMEOUT_SEC,
)
from core.models import ExternalPrice
from utils.exceptions import DataValidationError, ExternalDataError
from utils.helpers import ZERO, to_decimal
from utils.logger import get_logger
from utils.rate_limiter import TokenBucketRateLimiter


logger = get_logger(__name__)

_KNOWN_QUOTES = ('USDT', 'USDC', 'USD')


def split_symbol(symbol: str) -> Tuple[str, str]:
    """
    Split an exchange symbol such as 'SUIUSDT' or 'SUI/USDT' into (base, quote).

    Raises:
        ExternalDataError: If no known quote asset suffix is found
    """
    if '/' in symbol:
        base, quote = symbol.split('/', 1)
        return base, quote
    for quote in _KNOWN_QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[:-len(quote)], quote
    raise ExternalDataError(f"Cannot split symbol {symbol!r}", symbol=symbol)


class ExternalPriceSource(ABC):
    """One external venue"""

    name: str = "source"

    def __init__(self, base_url: str, rate_limiter: TokenBucketRateLimiter):
        self.base_url = base_url.rstrip('/')
        self.rate_limiter = rate_limiter

    @abstractmethod
    async def fetch(self, session: aiohttp.ClientSession, symbol: str) -> Optional[ExternalPrice]:
        """
        Fetch the current price for symbol.

        Returns:
            ExternalPrice, or None if the venue does not list the symbol

        Raises:
            ExternalDataError: On transport or payload failure
        """

    async def _get_json(self, session: aiohttp.ClientSession, path: str, params: dict, symbol: str):
        await self.rate_limiter.acquire()
        url = f"{self.base_url}{path}"
        try:
            async with session.get(url, params=params) as response:
                if response.status == 429:
                    raise ExternalDataError(
                        f"{self.name} rate limit exceeded",
                        source=self.name, symbol=symbol, error_code='RATE_LIMITED'
                    )
                if response.status != 200:
                    error_text = await response.text()
                    raise ExternalDataError(
                        f"{self.name} returned HTTP {response.status}: {error_text[:200]}",
                        source=self.name, symbol=symbol, error_code='HTTP_ERROR'
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalDataError(
                f"{self.name} request failed: {e}",
                source=self.name, symbol=symbol, original_error=e
            )


class BinanceTickerSource(ExternalPriceSource):
    """Binance 24h ticker"""

    name = "binance"

    def __init__(self, base_url: str = BINANCE_API_URL, rate_limiter: Optional[TokenBucketRateLimiter] = None):
        super().__init__(base_url, rate_limiter or TokenBucketRateLimiter.from_limit(BINANCE_RATE_LIMIT))

    async def fetch(self, session, symbol):
        base, quote = split_symbol(symbol)
        data = await self._get_json(session, '/api/v3/ticker/24hr', {'symbol': f"{base}{quote}"}, symbol)
        try:
            return ExternalPrice(
                symbol=symbol,
                price=to_decimal(data['lastPrice'], 'lastPrice'),
                volume_24h=to_decimal(data.get('volume', '0'), 'volume'),
                timestamp=time.time(),
                source=self.name,
            )
        except (KeyError, TypeError, AttributeError, DataValidationError) as e:
            raise ExternalDataError(
                f"Malformed {self.name} ticker payload",
                source=self.name, symbol=symbol, original_error=e
            )


class CoinbaseRateSource(ExternalPriceSource):
    """Coinbase exchange rates (USD-quoted, treated as the symbol's quote)"""

    name = "coinbase"

    def __init__(self, base_url: str = COINBASE_API_URL, rate_limiter: Optional[TokenBucketRateLimiter] = None):
        super().__init__(base_url, rate_limiter or TokenBucketRateLimiter.from_limit(COINBASE_RATE_LIMIT))

    async def fetch(self, session, symbol):
        base, _ = split_symbol(symbol)
        data = await self._get_json(session, '/v2/exchange-rates', {'currency': base}, symbol)
        try:
            usd_rate = data['data']['rates'].get('USD')
        except (KeyError, TypeError, AttributeError) as e:
            raise ExternalDataError(
                f"Malformed {self.name} rates payload",
                source=self.name, symbol=symbol, original_error=e
            )
        if usd_rate is None:
            return None
        try:
            price = to_decimal(usd_rate, 'USD rate')
        except DataValidationError as e:
            raise ExternalDataError(
                f"Invalid {self.name} USD rate {usd_rate!r}",
                source=self.name, symbol=symbol, original_error=e
            )
        return ExternalPrice(
            symbol=symbol,
            price=price,
            volume_24h=ZERO,  # Not provided by this endpoint
            timestamp=time.time(),
            source=self.name,
        )


class ExternalPriceFeed:
    """
    First-available, cached external price lookup.

    get_price() never raises for source failures; it returns None.
    """

    def __init__(
        self,
        sources: Optional[List[ExternalPriceSource]] = None,
        cache_ttl_sec: float = EXTERNAL_PRICE_CACHE_TTL_SEC,
        request_timeout_sec: float = EXTERNAL_REQUEST_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            sources: Venues in priority order (default: Binance, then Coinbase)
            cache_ttl_sec: Per-symbol cache lifetime
            request_timeout_sec: Total timeout per HTTP request
            session: Shared aiohttp session (created lazily if omitted)
            clock: Monotonic time source for cache freshness
        """
        self.sources = sources if sources is not None else [BinanceTickerSource(), CoinbaseRateSource()]
        self.cache_ttl_sec = cache_ttl_sec
        self.request_timeout_sec = request_timeout_sec
        self._session = session
        self._owns_session = session is None
        self._clock = clock

        self._cache: Dict[str, Tuple[ExternalPrice, float]] = {}
        self._hits = 0
        self._misses = 0

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout_sec),
                headers={"Accept": "application/json"}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this feed created it"""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Closed external price session")

    def _get_cached(self, symbol: str) -> Optional[ExternalPrice]:
        entry = self._cache.get(symbol)
        if entry is None:
            return None
        price, cached_at = entry
        if self._clock() - cached_at < self.cache_ttl_sec:
            return price
        return None

    async def get_price(self, symbol: str) -> Optional[ExternalPrice]:
        """
        Price of symbol from the first source that has it.

        Returns:
            ExternalPrice, or None if every source failed or lacks the symbol
        """
        cached = self._get_cached(symbol)
        if cached is not None:
            self._hits += 1
            return cached
        self._misses += 1

        session = self._get_session()
        for source in self.sources:
            try:
                price = await source.fetch(session, symbol)
            except ExternalDataError as e:
                logger.debug(f"External price from {source.name} unavailable for {symbol}: {e.message}")
                continue
            if price is None or not price.price.is_finite() or price.price <= ZERO:
                continue
            self._cache[symbol] = (price, self._clock())
            return price

        logger.info(f"No external price available for {symbol}")
        return None

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, ExternalPrice]:
        """Fetch several symbols concurrently; missing ones are omitted"""
        symbols = list(symbols)
        results = await asyncio.gather(*(self.get_price(s) for s in symbols))
        return {s: p for s, p in zip(symbols, results) if p is not None}

    def get_market_summary(self) -> dict:
        """Total cached 24h volume, symbol count and last update time"""
        prices = [price for price, _ in self._cache.values()]
        return {
            'total_volume': sum((p.volume_24h for p in prices), Decimal('0')),
            'active_symbols': len(prices),
            'last_update': max((p.timestamp for p in prices), default=0.0),
        }

    def get_cache_stats(self) -> dict:
        return {
            'cached_symbols': len(self._cache),
            'hits': self._hits,
            'misses': self._misses,
            'ttl_sec': self.cache_ttl_sec,
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("External price cache cleared")
