"""
Path & Pair Registry

Built once from instrument metadata at startup:
- Triangular paths from configured asset cycles, or every 3-cycle of the
  instrument graph when no cycles are configured
- Monitored cross-venue pairs (reference instrument vs external symbol)

Paths with any missing leg are discarded, not retried. Paths are ranked by
priority = sum of the instruments' 24h volumes at build time.

After build() the registry is read-only and may be read without locking.
"""

from decimal import Decimal
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.models import Instrument, MonitoredPair, PriceSnapshot, TriangularPath
from utils.logger import get_logger


logger = get_logger(__name__)


class PathRegistry:
    """Static registry of triangular paths and monitored pairs"""

    def __init__(self):
        self._paths: Tuple[TriangularPath, ...] = ()
        self._pairs: Tuple[MonitoredPair, ...] = ()
        self._by_assets: Dict[frozenset, Instrument] = {}

    @property
    def paths(self) -> Tuple[TriangularPath, ...]:
        return self._paths

    @property
    def pairs(self) -> Tuple[MonitoredPair, ...]:
        return self._pairs

    def build(
        self,
        instruments: Iterable[Instrument],
        prices: Mapping[str, PriceSnapshot],
        cycles: Optional[Sequence[Sequence[str]]] = None,
        monitored_pairs: Optional[Sequence[Tuple[str, str, str]]] = None
    ) -> None:
        """
        Build paths and pairs from instrument metadata.

        Args:
            instruments: Instruments listed on the reference venue
            prices: Current snapshots by symbol (for priority scoring)
            cycles: Candidate asset cycles; None enumerates all 3-cycles
            monitored_pairs: (reference symbol, external symbol, external quote)
        """
        instruments = list(instruments)
        self._by_assets = {}
        for instrument in instruments:
            # First listing wins if a venue lists both orientations
            self._by_assets.setdefault(frozenset((instrument.base, instrument.quote)), instrument)

        if cycles is None:
            cycles = self._enumerate_cycles()

        paths = []
        for cycle in cycles:
            path = self._build_path(cycle, prices)
            if path is not None:
                paths.append(path)
        paths.sort(key=lambda p: p.priority, reverse=True)
        self._paths = tuple(paths)

        self._pairs = tuple(self._build_pairs(instruments, monitored_pairs or []))

        logger.info(
            f"Registry built: {len(self._paths)} triangular paths, "
            f"{len(self._pairs)} monitored pairs",
            extra={'instrument_count': len(instruments)}
        )

    def find_instrument(self, asset_a: str, asset_b: str) -> Optional[Instrument]:
        """Instrument trading asset_a against asset_b in either orientation"""
        return self._by_assets.get(frozenset((asset_a, asset_b)))

    def _build_path(
        self,
        cycle: Sequence[str],
        prices: Mapping[str, PriceSnapshot]
    ) -> Optional[TriangularPath]:
        if len(cycle) != 3 or len(set(cycle)) != 3:
            logger.debug(f"Ignoring malformed cycle {list(cycle)}")
            return None

        legs = []
        for i, asset in enumerate(cycle):
            next_asset = cycle[(i + 1) % 3]
            instrument = self.find_instrument(asset, next_asset)
            if instrument is None:
                logger.debug(f"Discarding cycle {list(cycle)}: no {asset}/{next_asset} instrument")
                return None
            legs.append(instrument)

        priority = sum(
            (prices[i.symbol].volume_24h for i in legs if i.symbol in prices),
            Decimal('0')
        )
        return TriangularPath(assets=tuple(cycle), instruments=tuple(legs), priority=priority)

    def _enumerate_cycles(self) -> List[List[str]]:
        """Every 3-cycle of the instrument graph, in both directions"""
        assets = sorted({a for key in self._by_assets for a in key})
        cycles = []
        for a, b, c in combinations(assets, 3):
            if all(self.find_instrument(x, y) for x, y in ((a, b), (b, c), (c, a))):
                cycles.append([a, b, c])
                cycles.append([a, c, b])
        return cycles

    def _build_pairs(
        self,
        instruments: List[Instrument],
        monitored: Sequence[Tuple[str, str, str]]
    ) -> List[MonitoredPair]:
        by_symbol = {i.symbol: i for i in instruments}
        pairs = []
        for priority, (symbol, external_symbol, external_quote) in enumerate(monitored, start=1):
            instrument = by_symbol.get(symbol)
            if instrument is None:
                logger.debug(f"Monitored pair {symbol}/{external_symbol} has no reference instrument")
                continue
            pairs.append(MonitoredPair(
                instrument=instrument,
                external_symbol=external_symbol,
                external_quote=external_quote,
                conversion_required=external_quote != instrument.quote,
                priority=priority,
            ))
        return pairs
