"""
Dynamic Configuration System

pydantic-settings based configuration for the arbitrage engine.

Features:
- Environment variable overrides for all parameters
- Type validation and coercion (Decimal for money and ratios)
- Cross-field validation after initialization
- Hot-reload support for runtime parameter tuning

Usage:
    from config.settings import get_settings

    settings = get_settings()
    limits = settings.risk_limits()

    # Override via environment:
    # export MAX_POSITION_SIZE=25
"""

from typing import Optional
from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from config.constants import (
    SCAN_INTERVAL_SEC,
    PRICE_REFRESH_INTERVAL_SEC,
    STATUS_LOG_INTERVAL_SEC,
    OPPORTUNITY_TTL_SEC,
    MAX_OPPORTUNITIES_PER_SCAN,
    EXTERNAL_PRICE_CACHE_TTL_SEC,
    EXTERNAL_REQUEST_TIMEOUT_SEC,
    BINANCE_API_URL,
    COINBASE_API_URL,
    LOG_LEVEL,
    LOG_FILE_PATH,
    STRUCTURED_LOGGING,
)
from core.models import RiskLimits


class TradingSettings(BaseSettings):
    """
    Engine configuration

    All parameters can be overridden via environment variables.
    Example: MAX_DAILY_LOSS=50 arb-engine
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ============================================================================
    # RISK LIMITS
    # ============================================================================

    max_position_size: Decimal = Field(
        default=Decimal('50'),
        description="Maximum size of a single trade (reference units)",
        gt=0
    )

    max_daily_loss: Decimal = Field(
        default=Decimal('100'),
        description="Daily loss that halts trading (reference units)",
        gt=0
    )

    max_slippage: Decimal = Field(
        default=Decimal('0.03'),
        description="Slippage tolerance (3%). Profit ratio must exceed this plus a gas buffer",
        gt=0,
        lt=1
    )

    stop_loss_ratio: Decimal = Field(
        default=Decimal('0.02'),
        description="Stop-loss ratio (2%)",
        gt=0,
        lt=1
    )

    max_concurrent_trades: int = Field(
        default=3,
        description="Maximum number of pending trades",
        ge=1
    )

    # ============================================================================
    # DETECTION
    # ============================================================================

    min_profit_threshold: Decimal = Field(
        default=Decimal('0.005'),
        description="""
        Minimum profit ratio (0.5%).

        Triangular: probe profit ratio must reach this value.
        Cross-venue: price discrepancy must reach this value.
        Both: net profit after gas must exceed threshold * trade_amount.
        """,
        ge=0,
        lt=1
    )

    min_trade_amount: Decimal = Field(
        default=Decimal('0.1'),
        description="Lower optimizer bound for triangular trades",
        gt=0
    )

    max_trade_amount: Decimal = Field(
        default=Decimal('100'),
        description="Upper optimizer bound for triangular trades",
        gt=0
    )

    min_expected_profit: Decimal = Field(
        default=Decimal('0.05'),
        description="Minimum absolute expected profit for cross-venue trades",
        ge=0
    )

    # ============================================================================
    # SCHEDULING
    # ============================================================================

    scan_interval_sec: float = Field(
        default=SCAN_INTERVAL_SEC,
        description="Opportunity scan interval (seconds)",
        gt=0
    )

    price_refresh_interval_sec: float = Field(
        default=PRICE_REFRESH_INTERVAL_SEC,
        description="Reference venue snapshot refresh interval (seconds)",
        gt=0
    )

    status_log_interval_sec: float = Field(
        default=STATUS_LOG_INTERVAL_SEC,
        description="System status log interval (seconds)",
        gt=0
    )

    opportunity_ttl_sec: float = Field(
        default=OPPORTUNITY_TTL_SEC,
        description="Opportunity deadline horizon from creation (seconds)",
        gt=0
    )

    max_opportunities_per_scan: int = Field(
        default=MAX_OPPORTUNITIES_PER_SCAN,
        description="Top-N ranked opportunities evaluated per scan",
        ge=1
    )

    # ============================================================================
    # STRATEGIES
    # ============================================================================

    triangular_enabled: bool = Field(default=True)
    cross_venue_enabled: bool = Field(default=True)

    # ============================================================================
    # EXTERNAL PRICES
    # ============================================================================

    external_price_cache_ttl_sec: float = Field(
        default=EXTERNAL_PRICE_CACHE_TTL_SEC,
        ge=0
    )

    external_request_timeout_sec: float = Field(
        default=EXTERNAL_REQUEST_TIMEOUT_SEC,
        gt=0
    )

    binance_base_url: str = Field(default=BINANCE_API_URL)
    coinbase_base_url: str = Field(default=COINBASE_API_URL)

    # ============================================================================
    # PAPER MODE / LOGGING
    # ============================================================================

    snapshot_file: str = Field(
        default='data/market_snapshot.json',
        description="JSON file backing the reference venue in paper mode"
    )

    log_level: str = Field(default=LOG_LEVEL)
    log_file_path: str = Field(default=LOG_FILE_PATH)
    structured_logging: bool = Field(default=STRUCTURED_LOGGING)

    def model_post_init(self, __context):
        """Validate cross-field constraints after all fields are set"""
        if self.min_trade_amount >= self.max_trade_amount:
            raise ValueError(
                f"min_trade_amount ({self.min_trade_amount}) must be below "
                f"max_trade_amount ({self.max_trade_amount})"
            )

    def risk_limits(self) -> RiskLimits:
        """Build the RiskLimits value consumed by the risk controller"""
        return RiskLimits(
            max_position_size=self.max_position_size,
            max_daily_loss=self.max_daily_loss,
            max_slippage=self.max_slippage,
            stop_loss_ratio=self.stop_loss_ratio,
            max_concurrent_trades=self.max_concurrent_trades,
        )


# Singleton instance
_settings: Optional[TradingSettings] = None


def get_settings() -> TradingSettings:
    """
    Get singleton settings instance.

    Returns:
        TradingSettings: Configured settings instance

    Example:
        >>> settings = get_settings()
        >>> print(settings.max_concurrent_trades)
        3
    """
    global _settings
    if _settings is None:
        _settings = TradingSettings()
    return _settings


def reload_settings() -> TradingSettings:
    """
    Force reload settings from environment.

    Useful for hot-reload during runtime parameter tuning.

    Returns:
        TradingSettings: New settings instance
    """
    global _settings
    _settings = TradingSettings()
    return _settings


__all__ = ['get_settings', 'reload_settings', 'TradingSettings']
