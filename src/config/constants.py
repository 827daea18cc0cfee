"""
Configuration Constants for the Arbitrage Detection & Risk Engine

This module centralizes the heuristic policy constants used by the
simulators, detectors and the risk controller. They encode policy rather
than mechanism, so every component that reads them also accepts an
override through its parameter dataclass (SimulationParams,
CrossVenueParams, RiskPolicy).

Key Principles:
- Single source of truth for all policy values
- All constants are Final (immutable)
- Monetary and ratio values are Decimal (no binary floating point)
- Amounts are expressed in reference units of the base asset
  (e.g. 1 SUI), never in raw on-chain units
"""

from decimal import Decimal
from typing import Final, Dict, List, Tuple


# ============================================================================
# 1. TRIANGULAR SIMULATION
# ============================================================================
# Per-leg slippage grows linearly with the amount entering the leg:
#   slippage = BASE_SLIPPAGE * (1 + amount / REFERENCE_LIQUIDITY)
# A flat trading fee is charged on every leg.
# ============================================================================

BASE_SLIPPAGE: Final[Decimal] = Decimal('0.001')  # 0.1% per leg
REFERENCE_LIQUIDITY: Final[Decimal] = Decimal('1000')  # 1000 reference units
TRIANGULAR_TRADING_FEE: Final[Decimal] = Decimal('0.0025')  # 0.25% per leg

# Probe amount used for the quick profitability check before optimizing
TRIANGULAR_PROBE_AMOUNT: Final[Decimal] = Decimal('1')

# Decimal places kept after each multiplication (truncated toward zero)
DECIMAL_PLACES: Final[int] = 18


# ============================================================================
# 2. TRADE-SIZE OPTIMIZER
# ============================================================================

OPTIMIZER_MAX_ITERATIONS: Final[int] = 50
OPTIMIZER_PRECISION: Final[Decimal] = Decimal('0.001')


# ============================================================================
# 3. GAS ESTIMATES (reference units)
# ============================================================================

TRIANGULAR_BASE_GAS: Final[Decimal] = Decimal('0.05')
TRIANGULAR_GAS_PER_LEG: Final[Decimal] = Decimal('0.02')
CROSS_VENUE_GAS: Final[Decimal] = Decimal('0.08')


# ============================================================================
# 4. CROSS-VENUE DETECTION
# ============================================================================
# No order book is consulted, so depth is approximated by a share of the
# reference instrument's 24h volume. Larger relative gaps allow larger
# trades: max_amount = BASE_LIQUIDITY * (gap * 100 + 1)
# ============================================================================

CROSS_VENUE_TRADING_FEE: Final[Decimal] = Decimal('0.005')  # 0.5% round trip
CROSS_VENUE_BASE_LIQUIDITY: Final[Decimal] = Decimal('10')
CROSS_VENUE_LIQUIDITY_SHARE: Final[Decimal] = Decimal('0.1')  # 10% of 24h volume

# Stablecoin conversion rates (external quote -> reference quote).
# Pairs missing from this table have no known rate and are skipped.
STABLECOIN_CONVERSION_RATES: Final[Dict[Tuple[str, str], Decimal]] = {
    ('USDT', 'USDC'): Decimal('1'),
    ('USDC', 'USDT'): Decimal('1'),
}


# ============================================================================
# 5. CONFIDENCE SCORING
# ============================================================================

TRIANGULAR_CONFIDENCE_BASE: Final[float] = 0.5
TRIANGULAR_PROFIT_BONUS_SCALE: Final[float] = 10.0
TRIANGULAR_PROFIT_BONUS_CAP: Final[float] = 0.3
TRIANGULAR_LIQUIDITY_BONUS: Final[float] = 0.1  # full 3-leg path resolved
TRIANGULAR_CONFIDENCE_CEILING: Final[float] = 0.95

CROSS_VENUE_CONFIDENCE_BASE: Final[float] = 0.3
CROSS_VENUE_DISCREPANCY_BONUS_SCALE: Final[float] = 20.0
CROSS_VENUE_DISCREPANCY_BONUS_CAP: Final[float] = 0.4
CROSS_VENUE_VOLUME_BONUS_DIVISOR: Final[float] = 1_000_000.0
CROSS_VENUE_VOLUME_BONUS_CAP: Final[float] = 0.2
CROSS_VENUE_CONFIDENCE_CEILING: Final[float] = 0.85


# ============================================================================
# 6. RISK POLICY
# ============================================================================
# Kelly-inspired sizing:
#   fraction = confidence * profit_ratio * KELLY_MULTIPLIER
#   clamped to [KELLY_MIN_FRACTION, KELLY_MAX_FRACTION] of max position
# ============================================================================

KELLY_MULTIPLIER: Final[Decimal] = Decimal('0.5')
KELLY_MIN_FRACTION: Final[Decimal] = Decimal('0.01')
KELLY_MAX_FRACTION: Final[Decimal] = Decimal('0.25')

# Sizing fallbacks (fraction of max position size)
INVALID_INPUT_FALLBACK_FRACTION: Final[Decimal] = Decimal('0.1')
SIZING_ERROR_FALLBACK_FRACTION: Final[Decimal] = Decimal('0.05')

# Profit must exceed slippage tolerance plus this buffer
PROFIT_GAS_BUFFER: Final[Decimal] = Decimal('0.002')

# Total exposure cap = EXPOSURE_MULTIPLIER * max_position_size
EXPOSURE_MULTIPLIER: Final[Decimal] = Decimal('3')

# Exposure booked per pending trade
EXPOSURE_UNIT_PER_TRADE: Final[Decimal] = Decimal('0.1')

# Emergency shutdown when win rate < 30% and daily P&L below -floor
EMERGENCY_MIN_WIN_RATE: Final[float] = 0.3
EMERGENCY_LOSS_FLOOR: Final[Decimal] = Decimal('1')
EMERGENCY_DRAWDOWN_RATIO: Final[Decimal] = Decimal('0.5')

# Risk level thresholds (utilization ratios)
HIGH_RISK_UTILIZATION: Final[Decimal] = Decimal('0.8')
MEDIUM_RISK_UTILIZATION: Final[Decimal] = Decimal('0.5')

# Bookkeeping bounds
RETURN_HISTORY_MAX: Final[int] = 1000
RETURN_HISTORY_TRIM_TO: Final[int] = 500
TRADE_LOG_RETENTION_DAYS: Final[int] = 7
EXECUTION_TIMES_MAX: Final[int] = 100
EXECUTION_TIMES_TRIM_TO: Final[int] = 50


# ============================================================================
# 7. PATHS & MONITORED PAIRS
# ============================================================================
# Candidate triangular cycles. Paths with any missing leg are discarded
# when the registry is built.
# ============================================================================

DEFAULT_TRIANGULAR_CYCLES: Final[List[List[str]]] = [
    ['SUI', 'USDC', 'DEEP'],
    ['SUI', 'USDC', 'WETH'],
    ['SUI', 'USDC', 'WBTC'],
    ['SUI', 'DEEP', 'USDC'],
    ['USDC', 'WETH', 'SUI'],
    ['USDC', 'WBTC', 'SUI'],
    ['USDC', 'DEEP', 'SUI'],
    ['USDC', 'WUSDT', 'WUSDC'],
    ['DEEP', 'SUI', 'USDC'],
    ['DEEP', 'USDC', 'SUI'],
    ['WETH', 'USDC', 'SUI'],
    ['WBTC', 'USDC', 'SUI'],
    ['NS', 'SUI', 'USDC'],
    ['TYPUS', 'SUI', 'USDC'],
]

# (reference pair symbol, external symbol, external quote asset)
DEFAULT_MONITORED_PAIRS: Final[List[Tuple[str, str, str]]] = [
    ('SUI_USDC', 'SUIUSDT', 'USDT'),
    ('SUI_USDC', 'SUIUSDC', 'USDC'),
]


# ============================================================================
# 8. EXTERNAL PRICE SOURCES
# ============================================================================

EXTERNAL_PRICE_CACHE_TTL_SEC: Final[float] = 5.0
EXTERNAL_REQUEST_TIMEOUT_SEC: Final[float] = 5.0
BINANCE_API_URL: Final[str] = 'https://api.binance.com'
COINBASE_API_URL: Final[str] = 'https://api.coinbase.com'

# Token bucket settings per source (requests/sec, burst)
BINANCE_RATE_LIMIT: Final[Tuple[float, float]] = (5.0, 20.0)
COINBASE_RATE_LIMIT: Final[Tuple[float, float]] = (3.0, 10.0)


# ============================================================================
# 9. SCHEDULING
# ============================================================================

SCAN_INTERVAL_SEC: Final[float] = 2.0
PRICE_REFRESH_INTERVAL_SEC: Final[float] = 60.0
STATUS_LOG_INTERVAL_SEC: Final[float] = 30.0
OPPORTUNITY_TTL_SEC: Final[float] = 30.0
MAX_OPPORTUNITIES_PER_SCAN: Final[int] = 3


# ============================================================================
# 10. LOGGING
# ============================================================================

# Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_LEVEL: Final[str] = 'INFO'

# Log file path (rotating)
LOG_FILE_PATH: Final[str] = 'logs/arbitrage_engine.log'

# Rotate after this many bytes
MAX_LOG_FILE_SIZE: Final[int] = 50 * 1024 * 1024

# Number of rotated files to keep
LOG_BACKUP_COUNT: Final[int] = 10

# JSON formatting for the file handler
STRUCTURED_LOGGING: Final[bool] = True
