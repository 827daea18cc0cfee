"""
Base Strategy Abstract Class
Defines the interface that all arbitrage detectors must implement
"""

import itertools
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List

from config.constants import OPPORTUNITY_TTL_SEC
from core.models import Opportunity
from utils.helpers import to_decimal
from utils.logger import get_logger


logger = get_logger(__name__)

_sequence = itertools.count(1)


class ArbitrageStrategy(ABC):
    """
    Abstract base class for opportunity detectors.

    Detectors are advisory: they read the current market snapshot and
    return candidates, never mutating risk state. Missing data means no
    candidate, not an error.
    """

    name: str = "strategy"

    def __init__(
        self,
        market_data,
        min_profit_threshold: Decimal,
        opportunity_ttl_sec: float = OPPORTUNITY_TTL_SEC,
        enabled: bool = True
    ):
        """
        Initialize strategy

        Args:
            market_data: MarketDataProvider instance
            min_profit_threshold: Minimum profit ratio for candidates
            opportunity_ttl_sec: Deadline horizon for created opportunities
            enabled: Whether the scan loop should run this detector
        """
        self.market_data = market_data
        self.min_profit_threshold = to_decimal(min_profit_threshold, 'min_profit_threshold')
        self.opportunity_ttl_sec = opportunity_ttl_sec
        self.enabled = enabled
        logger.info(f"Strategy initialized: {self.name}")

    @abstractmethod
    async def find_opportunities(self) -> List[Opportunity]:
        """
        Scan the current market snapshot for candidates

        Returns:
            Candidates that passed this detector's own filters
        """
        pass

    def _new_id(self, *parts: str) -> str:
        return "-".join((self.name,) + parts + (str(int(time.time() * 1000)), str(next(_sequence))))

    def _deadline(self, created_at: float) -> float:
        return created_at + self.opportunity_ttl_sec

    def get_status(self) -> Dict[str, Any]:
        """
        Get current strategy status

        Returns:
            Dictionary with strategy status information
        """
        return {
            'name': self.name,
            'enabled': self.enabled,
            'min_profit_threshold': str(self.min_profit_threshold),
        }

    def update_config(self, config: Dict[str, Any]) -> None:
        """
        Update strategy settings

        Args:
            config: 'enabled' and/or 'min_profit_threshold'
        """
        if 'enabled' in config:
            self.enabled = bool(config['enabled'])
        if 'min_profit_threshold' in config:
            self.min_profit_threshold = to_decimal(config['min_profit_threshold'], 'min_profit_threshold')
        logger.info(f"Strategy {self.name} config updated: {config}")
