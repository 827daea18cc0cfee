"""
Market Data - Snapshot Store and Provider Interface

MarketStateCache holds the current instruments and PriceSnapshots of the
reference venue. A refresh swaps both maps wholesale under a single lock;
readers take no lock and see either the old or the new map, never a mix
within one lookup.

MarketDataProvider is the collaborator contract used by the detectors:
    get_price(symbol)           -> PriceSnapshot | None
    get_all_instruments()       -> [Instrument]
    get_external_price(symbol)  -> ExternalPrice | None   (awaitable)
    refresh()                   -> None                   (awaitable)

CachedMarketDataProvider backs the reference venue with a snapshot loader
(e.g. a JSON file in paper mode) and the external side with an
ExternalPriceFeed.
"""

import asyncio
import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.models import ExternalPrice, Instrument, PriceSnapshot
from utils.exceptions import ConfigurationError, DataValidationError
from utils.helpers import to_decimal
from utils.logger import get_logger


logger = get_logger(__name__)

SnapshotLoader = Callable[[], Tuple[List[Instrument], Dict[str, PriceSnapshot]]]


class MarketStateCache:
    """Current instruments and price snapshots, replaced wholesale"""

    def __init__(self):
        self._lock = threading.Lock()
        self._instruments: Dict[str, Instrument] = {}
        self._prices: Dict[str, PriceSnapshot] = {}
        self.last_refresh: float = 0.0

    def replace(self, instruments: Iterable[Instrument], prices: Mapping[str, PriceSnapshot]) -> None:
        """Swap in a new snapshot (no partial merge)"""
        new_instruments = {i.symbol: i for i in instruments}
        new_prices = dict(prices)
        with self._lock:
            self._instruments = new_instruments
            self._prices = new_prices
            self.last_refresh = time.time()

    def get_price(self, symbol: str) -> Optional[PriceSnapshot]:
        return self._prices.get(symbol)

    def get_instruments(self) -> List[Instrument]:
        return list(self._instruments.values())

    def get_prices(self) -> Dict[str, PriceSnapshot]:
        return dict(self._prices)


class MarketDataProvider(ABC):
    """Market data collaborator used by detectors and the scan loop"""

    @abstractmethod
    def get_price(self, symbol: str) -> Optional[PriceSnapshot]:
        pass

    @abstractmethod
    def get_all_instruments(self) -> List[Instrument]:
        pass

    @abstractmethod
    async def get_external_price(self, symbol: str) -> Optional[ExternalPrice]:
        """None on any failure; callers skip the candidate"""
        pass

    @abstractmethod
    async def refresh(self) -> None:
        pass

    def get_all_prices(self) -> Dict[str, PriceSnapshot]:
        """Snapshot of every known price (used for registry priorities)"""
        prices = {}
        for instrument in self.get_all_instruments():
            snapshot = self.get_price(instrument.symbol)
            if snapshot is not None:
                prices[instrument.symbol] = snapshot
        return prices


class CachedMarketDataProvider(MarketDataProvider):
    """
    Provider backed by a MarketStateCache and an external price feed.

    refresh() runs the snapshot loader off the event loop and swaps the
    result into the cache. A failed refresh keeps the previous snapshot.
    """

    def __init__(
        self,
        snapshot_loader: Optional[SnapshotLoader] = None,
        external_feed=None,
        cache: Optional[MarketStateCache] = None
    ):
        """
        Args:
            snapshot_loader: Callable returning (instruments, prices by symbol)
            external_feed: ExternalPriceFeed (None disables external prices)
            cache: Shared snapshot store
        """
        self.snapshot_loader = snapshot_loader
        self.external_feed = external_feed
        self.cache = cache or MarketStateCache()

    def get_price(self, symbol: str) -> Optional[PriceSnapshot]:
        return self.cache.get_price(symbol)

    def get_all_instruments(self) -> List[Instrument]:
        return self.cache.get_instruments()

    def get_all_prices(self) -> Dict[str, PriceSnapshot]:
        return self.cache.get_prices()

    async def get_external_price(self, symbol: str) -> Optional[ExternalPrice]:
        if self.external_feed is None:
            return None
        return await self.external_feed.get_price(symbol)

    async def refresh(self) -> None:
        if self.snapshot_loader is None:
            return
        try:
            instruments, prices = await asyncio.to_thread(self.snapshot_loader)
        except (ConfigurationError, DataValidationError) as e:
            logger.error(f"Market snapshot refresh failed, keeping previous data: {e}")
            return
        self.cache.replace(instruments, prices)
        logger.info(
            f"Market snapshot refreshed: {len(instruments)} instruments, {len(prices)} prices"
        )

    async def close(self) -> None:
        if self.external_feed is not None:
            await self.external_feed.close()


# ============================================================================
# JSON snapshot file (paper mode)
# ============================================================================

def _parse_instrument(entry: Dict[str, Any]) -> Instrument:
    try:
        base = entry['base']
        quote = entry['quote']
        return Instrument(
            base=base,
            quote=quote,
            symbol=entry.get('symbol', f"{base}_{quote}"),
            min_trade_size=to_decimal(entry.get('min_trade_size', '0'), 'min_trade_size'),
            lot_size=to_decimal(entry.get('lot_size', '0'), 'lot_size'),
            tick_size=to_decimal(entry.get('tick_size', '0'), 'tick_size'),
            base_precision=int(entry.get('base_precision', 9)),
            quote_precision=int(entry.get('quote_precision', 6)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DataValidationError(
            f"Malformed instrument entry: {entry!r}",
            error_code='INVALID_SNAPSHOT',
            original_error=e
        )


def _parse_price(symbol: str, entry: Dict[str, Any]) -> PriceSnapshot:
    try:
        price = to_decimal(entry['price'], f"{symbol}.price")
        return PriceSnapshot(
            price=price,
            bid=to_decimal(entry.get('bid', price), f"{symbol}.bid"),
            ask=to_decimal(entry.get('ask', price), f"{symbol}.ask"),
            volume_24h=to_decimal(entry.get('volume_24h', '0'), f"{symbol}.volume_24h"),
            change_24h=to_decimal(entry.get('change_24h', '0'), f"{symbol}.change_24h"),
            timestamp=float(entry.get('timestamp', time.time())),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DataValidationError(
            f"Malformed price entry for {symbol}",
            error_code='INVALID_SNAPSHOT',
            original_error=e
        )


def load_snapshot_file(path: str) -> Tuple[List[Instrument], Dict[str, PriceSnapshot]]:
    """
    Load instruments and prices from a JSON snapshot file.

    Format:
        {
          "instruments": [{"base": "SUI", "quote": "USDC", "symbol": "SUI_USDC", ...}],
          "prices": {"SUI_USDC": {"price": "4.25", "bid": "4.24", "ask": "4.26",
                                  "volume_24h": "1500000"}}
        }

    Raises:
        ConfigurationError: If the file cannot be read or parsed as JSON
        DataValidationError: If an entry is malformed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read market snapshot file {path}: {e}",
            error_code='SNAPSHOT_UNREADABLE',
            original_error=e
        )
    if not isinstance(raw, dict):
        raise DataValidationError(
            f"Market snapshot {path} must be a JSON object",
            error_code='INVALID_SNAPSHOT'
        )

    instruments = [_parse_instrument(entry) for entry in raw.get('instruments', [])]
    prices = {
        symbol: _parse_price(symbol, entry)
        for symbol, entry in raw.get('prices', {}).items()
    }
    return instruments, prices
