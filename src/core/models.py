"""
Data Model for the Arbitrage Detection & Risk Engine

Market data:
    Instrument      - tradeable pair metadata (immutable, refreshed wholesale)
    PriceSnapshot   - one per instrument, replaced wholesale on refresh
    ExternalPrice   - price of the same asset on an independent venue

Registry:
    TriangularPath  - 3 assets + the 3 instruments connecting them (wrapping)
    MonitoredPair   - reference instrument watched against an external symbol

Opportunities (tagged union, resolved by `kind`):
    Opportunity             - shared base: id, amount, profit, confidence, deadline
    TriangularOpportunity   - payload: path
    CrossVenueOpportunity   - payload: reference instrument, external symbol, direction

Risk bookkeeping:
    RiskLimits, RiskEvaluation, RiskMetrics, TradeLog, ExecutionResult
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


# ============================================================================
# Enums
# ============================================================================

class OpportunityKind(Enum):
    """Opportunity variants"""
    TRIANGULAR = "triangular"
    CROSS_VENUE = "cross-venue"


class TradeDirection(Enum):
    """Cross-venue direction: buy on the cheaper venue, sell on the other"""
    BUY_REFERENCE = "buy-reference"
    SELL_REFERENCE = "sell-reference"


class TradeStatus(Enum):
    """Trade lifecycle: PENDING -> SUCCESS | FAILED"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TradeStatus.PENDING


class RiskLevel(Enum):
    """Current risk level from exposure / daily-loss utilization"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================================
# Market Data
# ============================================================================

@dataclass(frozen=True)
class Instrument:
    """Tradeable pair on the reference venue"""
    base: str
    quote: str
    symbol: str  # Unique pair symbol, e.g. 'SUI_USDC'
    min_trade_size: Decimal = Decimal('0')
    lot_size: Decimal = Decimal('0')
    tick_size: Decimal = Decimal('0')
    base_precision: int = 9
    quote_precision: int = 6

    def connects(self, asset_a: str, asset_b: str) -> bool:
        """True if this instrument trades asset_a against asset_b (either direction)"""
        return {self.base, self.quote} == {asset_a, asset_b}


@dataclass(frozen=True)
class PriceSnapshot:
    """Current market state of one instrument (quote per base)"""
    price: Decimal
    bid: Decimal
    ask: Decimal
    volume_24h: Decimal
    change_24h: Decimal = Decimal('0')
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ExternalPrice:
    """Price of an asset on an external venue"""
    symbol: str
    price: Decimal
    volume_24h: Decimal
    timestamp: float
    source: str = "unknown"


# ============================================================================
# Registry
# ============================================================================

@dataclass(frozen=True)
class TriangularPath:
    """
    Three-asset cycle and the instruments connecting consecutive assets.

    instruments[i] connects assets[i] -> assets[(i + 1) % 3].
    priority is the sum of the instruments' 24h volumes at build time.
    """
    assets: Tuple[str, str, str]
    instruments: Tuple[Instrument, Instrument, Instrument]
    priority: Decimal = Decimal('0')

    @property
    def label(self) -> str:
        return " -> ".join(self.assets + (self.assets[0],))

    def legs(self):
        """Yield (from_asset, to_asset, instrument) for each leg in order"""
        for i, instrument in enumerate(self.instruments):
            yield self.assets[i], self.assets[(i + 1) % len(self.assets)], instrument


@dataclass
class MonitoredPair:
    """
    Reference instrument watched against an external venue symbol.

    last_price_check and price_discrepancy are updated on every scan.
    """
    instrument: Instrument
    external_symbol: str
    external_quote: str
    conversion_required: bool = False
    priority: int = 1
    last_price_check: float = 0.0
    price_discrepancy: Decimal = Decimal('0')

    @property
    def base_asset(self) -> str:
        return self.instrument.base

    @property
    def quote_asset(self) -> str:
        return self.instrument.quote


# ============================================================================
# Opportunities
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class Opportunity(ABC):
    """
    Shared base of all opportunity variants.

    Immutable once created; the risk controller's clamped amount is
    applied with with_trade_amount(), which returns a copy.
    """
    id: str
    trade_amount: Decimal
    expected_profit: Decimal  # Absolute, before gas
    profit_ratio: Decimal
    gas_estimate: Decimal
    confidence: float  # 0-1
    created_at: float = field(default_factory=time.time)
    deadline: float = 0.0  # Unix timestamp, advisory

    @property
    @abstractmethod
    def kind(self) -> OpportunityKind:
        pass

    @property
    @abstractmethod
    def instruments(self) -> Tuple[Instrument, ...]:
        """Instruments touched by the trade"""
        pass

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once the advisory deadline has passed (0 = no deadline)"""
        if not self.deadline:
            return False
        return (now if now is not None else time.time()) > self.deadline

    def with_trade_amount(self, amount: Decimal) -> "Opportunity":
        """Copy with a risk-adjusted trade amount"""
        return replace(self, trade_amount=amount)


@dataclass(frozen=True, kw_only=True)
class TriangularOpportunity(Opportunity):
    """Three-leg cycle returning to the start asset"""
    path: TriangularPath

    @property
    def kind(self) -> OpportunityKind:
        return OpportunityKind.TRIANGULAR

    @property
    def instruments(self) -> Tuple[Instrument, ...]:
        return self.path.instruments


@dataclass(frozen=True, kw_only=True)
class CrossVenueOpportunity(Opportunity):
    """Price gap for one asset between the reference venue and an external one"""
    instrument: Instrument
    external_symbol: str
    direction: TradeDirection
    reference_price: Decimal
    external_price: Decimal  # After unit conversion
    discrepancy: Decimal

    @property
    def kind(self) -> OpportunityKind:
        return OpportunityKind.CROSS_VENUE

    @property
    def instruments(self) -> Tuple[Instrument, ...]:
        return (self.instrument,)

    @property
    def buy_reference(self) -> bool:
        return self.direction is TradeDirection.BUY_REFERENCE


# ============================================================================
# Risk & Execution
# ============================================================================

@dataclass(frozen=True)
class RiskLimits:
    """Risk limits read by every evaluation"""
    max_position_size: Decimal
    max_daily_loss: Decimal
    max_slippage: Decimal
    stop_loss_ratio: Decimal
    max_concurrent_trades: int


@dataclass(frozen=True)
class RiskEvaluation:
    """Outcome of a risk evaluation"""
    approved: bool
    reason: Optional[str] = None
    adjusted_amount: Optional[Decimal] = None

    @classmethod
    def reject(cls, reason: str) -> "RiskEvaluation":
        return cls(approved=False, reason=reason)


@dataclass(frozen=True)
class RiskMetrics:
    """Point-in-time risk metrics"""
    total_exposure: Decimal
    daily_pnl: Decimal
    win_rate: float
    max_drawdown: Decimal
    sharpe_ratio: float
    current_risk: RiskLevel


@dataclass
class TradeLog:
    """
    Trade lifecycle record.

    Created PENDING at trade start, moved once to SUCCESS/FAILED when the
    execution result arrives. Pruned in bulk on daily reset.
    """
    id: str
    timestamp: float
    strategy: str  # Opportunity kind value
    status: TradeStatus = TradeStatus.PENDING
    opportunity_id: Optional[str] = None
    profit: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None


@dataclass(frozen=True)
class ExecutionResult:
    """Result returned by the execution hand-off"""
    success: bool
    duration_ms: float
    realized_profit: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    error: Optional[str] = None
    reference: Optional[str] = None  # Settlement-layer reference (tx digest, order id)
