"""
Risk Controller - Risk-Gated Trade Approval and Sizing

Stateful gate between opportunity detection and execution:
1. Evaluate: approve, clamp or reject each candidate in a fixed order
2. Record: track pending/terminal trades, exposure and daily P&L
3. Metrics: win rate, drawdown, Sharpe ratio, risk level
4. Emergency Shutdown: global halt on severe limit breaches
5. Daily Reset: at UTC midnight zero the daily P&L and prune old trade logs

Evaluation order (first rejection short-circuits):
    1. active trades >= max concurrent trades          -> reject
    2. daily P&L < -max daily loss                     -> reject
    3. trade amount > max position size                -> clamp, continue
    4. profit ratio < max slippage + gas buffer        -> reject
    5. exposure + amount > 3 x max position size       -> clamp to headroom,
                                                          or reject if none
    6. Kelly size (confidence x ratio x 0.5, [1%, 25%]) -> clamp if smaller
    7. approve

Thread Safety:
=============
All state (exposure, active trades, daily P&L, returns, trade log, limits)
is owned by this instance and guarded by one RLock. Limits are read once
per evaluation, so an evaluation never observes limits changing mid-check.
approve_and_open() evaluates and books the pending trade atomically, so
two candidates cannot both pass the exposure check against a stale value.
"""

import time
import threading
import uuid
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.constants import (
    EMERGENCY_DRAWDOWN_RATIO,
    EMERGENCY_LOSS_FLOOR,
    EMERGENCY_MIN_WIN_RATE,
    EXPOSURE_MULTIPLIER,
    EXPOSURE_UNIT_PER_TRADE,
    HIGH_RISK_UTILIZATION,
    INVALID_INPUT_FALLBACK_FRACTION,
    KELLY_MAX_FRACTION,
    KELLY_MIN_FRACTION,
    KELLY_MULTIPLIER,
    MEDIUM_RISK_UTILIZATION,
    PROFIT_GAS_BUFFER,
    RETURN_HISTORY_MAX,
    RETURN_HISTORY_TRIM_TO,
    SIZING_ERROR_FALLBACK_FRACTION,
    TRADE_LOG_RETENTION_DAYS,
)
from core.models import (
    Opportunity,
    RiskEvaluation,
    RiskLevel,
    RiskLimits,
    RiskMetrics,
    TradeLog,
    TradeStatus,
)
from utils.exceptions import DataValidationError, RiskEvaluationError
from utils.helpers import (
    ZERO,
    clamp,
    decimal_stddev,
    is_finite_number,
    max_drawdown,
    sharpe_ratio,
    to_decimal,
    truncate,
)
from utils.logger import get_logger, log_error_with_context, log_trade_event


logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class RiskPolicy:
    """Heuristic sizing and shutdown policy"""
    kelly_multiplier: Decimal = KELLY_MULTIPLIER
    kelly_min_fraction: Decimal = KELLY_MIN_FRACTION
    kelly_max_fraction: Decimal = KELLY_MAX_FRACTION
    invalid_input_fallback_fraction: Decimal = INVALID_INPUT_FALLBACK_FRACTION
    sizing_error_fallback_fraction: Decimal = SIZING_ERROR_FALLBACK_FRACTION
    profit_gas_buffer: Decimal = PROFIT_GAS_BUFFER
    exposure_multiplier: Decimal = EXPOSURE_MULTIPLIER
    exposure_unit_per_trade: Decimal = EXPOSURE_UNIT_PER_TRADE
    emergency_min_win_rate: float = EMERGENCY_MIN_WIN_RATE
    emergency_loss_floor: Decimal = EMERGENCY_LOSS_FLOOR
    emergency_drawdown_ratio: Decimal = EMERGENCY_DRAWDOWN_RATIO
    high_risk_utilization: Decimal = HIGH_RISK_UTILIZATION
    medium_risk_utilization: Decimal = MEDIUM_RISK_UTILIZATION
    trade_log_retention_days: int = TRADE_LOG_RETENTION_DAYS


def next_utc_midnight(timestamp: float) -> float:
    """Unix timestamp of the first UTC midnight strictly after timestamp"""
    day = datetime.fromtimestamp(timestamp, tz=timezone.utc).date()
    midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc) + timedelta(days=1)
    return midnight.timestamp()


class RiskController:
    """
    Risk engine owning exposure, active trades, daily P&L and the trade log.

    Every public method takes the instance lock; callers never touch the
    counters directly.
    """

    def __init__(
        self,
        limits: RiskLimits,
        policy: Optional[RiskPolicy] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize risk controller

        Args:
            limits: Initial risk limits
            policy: Sizing/shutdown policy override
            clock: Wall-clock time source (Unix seconds, UTC)
        """
        self._lock = threading.RLock()
        self._limits = limits
        self.policy = policy or RiskPolicy()
        self._clock = clock

        self._current_exposure = ZERO
        self._daily_pnl = ZERO
        self._active_trades = 0
        self._returns: List[Decimal] = []
        self._trade_log: Dict[str, TradeLog] = {}  # insertion order = log order
        self._next_reset = next_utc_midnight(clock())
        self.last_shutdown_reason: Optional[str] = None

        logger.info(
            f"🛡️  RiskController initialized:\n"
            f"   Max Position: {limits.max_position_size}\n"
            f"   Max Daily Loss: {limits.max_daily_loss}\n"
            f"   Max Slippage: {float(limits.max_slippage) * 100:.2f}%\n"
            f"   Max Concurrent Trades: {limits.max_concurrent_trades}"
        )

    # ========================================================================
    # State accessors
    # ========================================================================

    @property
    def limits(self) -> RiskLimits:
        with self._lock:
            return self._limits

    @property
    def current_exposure(self) -> Decimal:
        with self._lock:
            return self._current_exposure

    @property
    def daily_pnl(self) -> Decimal:
        with self._lock:
            return self._daily_pnl

    @property
    def active_trades(self) -> int:
        with self._lock:
            return self._active_trades

    def get_trade_log(self) -> List[TradeLog]:
        with self._lock:
            return list(self._trade_log.values())

    def get_returns(self) -> List[Decimal]:
        with self._lock:
            return list(self._returns)

    # ========================================================================
    # Evaluation
    # ========================================================================

    def evaluate(self, opportunity: Opportunity) -> RiskEvaluation:
        """
        Approve, clamp or reject a candidate.

        Never raises: an unexpected fault becomes a rejection.

        Returns:
            RiskEvaluation(approved, reason, adjusted_amount)
        """
        with self._lock:
            self._maybe_reset()
            limits = self._limits
            try:
                evaluation = self._evaluate_locked(opportunity, limits)
            except Exception as e:
                log_error_with_context(
                    logger, "Risk evaluation failed, rejecting", e,
                    opportunity_id=getattr(opportunity, 'id', None)
                )
                return RiskEvaluation.reject("Risk evaluation error")

        if evaluation.approved:
            logger.info(
                f"✅ Risk approved {opportunity.id}"
                + (f" (size {evaluation.adjusted_amount})" if evaluation.adjusted_amount is not None else "")
            )
        else:
            logger.info(f"⛔ Risk rejected {opportunity.id}: {evaluation.reason}")
        return evaluation

    def _evaluate_locked(self, opportunity: Opportunity, limits: RiskLimits) -> RiskEvaluation:
        policy = self.policy
        max_position = limits.max_position_size

        if self._active_trades >= limits.max_concurrent_trades:
            return RiskEvaluation.reject("Maximum concurrent trades reached")

        if self._daily_pnl < -limits.max_daily_loss:
            return RiskEvaluation.reject("Daily loss limit exceeded")

        trade_amount = opportunity.trade_amount
        if not isinstance(trade_amount, Decimal) or not trade_amount.is_finite():
            raise RiskEvaluationError(
                f"Invalid trade amount {trade_amount!r}",
                error_code='INVALID_AMOUNT'
            )

        adjusted: Optional[Decimal] = None
        if trade_amount > max_position:
            adjusted = max_position

        # NaN cannot be compared; it is handled by the sizing fallback
        profit_ratio = to_decimal(opportunity.profit_ratio, 'profit_ratio')
        if not profit_ratio.is_nan() and profit_ratio < limits.max_slippage + policy.profit_gas_buffer:
            return RiskEvaluation.reject("Profit ratio below slippage tolerance plus gas buffer")

        amount = adjusted if adjusted is not None else trade_amount
        exposure_cap = max_position * policy.exposure_multiplier
        if self._current_exposure + amount > exposure_cap:
            headroom = exposure_cap - self._current_exposure
            if headroom <= ZERO:
                return RiskEvaluation.reject("Total exposure limit reached")
            adjusted = headroom
            amount = headroom

        kelly_amount = self._kelly_size(opportunity, limits)
        if kelly_amount < amount:
            adjusted = kelly_amount

        return RiskEvaluation(approved=True, adjusted_amount=adjusted)

    def _kelly_size(self, opportunity: Opportunity, limits: RiskLimits) -> Decimal:
        """
        Kelly-inspired size: max_position * clamp(confidence * ratio * 0.5, 1%, 25%).

        Non-finite inputs fall back to 10% of max position; any other
        sizing fault falls back to 5%.
        """
        policy = self.policy
        max_position = limits.max_position_size
        try:
            confidence = opportunity.confidence
            profit_ratio = opportunity.profit_ratio
            if not is_finite_number(confidence) or not is_finite_number(profit_ratio):
                logger.warning(
                    f"Non-finite sizing inputs for {opportunity.id} "
                    f"(confidence={confidence}, profit_ratio={profit_ratio}), using fallback size"
                )
                return truncate(max_position * policy.invalid_input_fallback_fraction)

            fraction = to_decimal(confidence, 'confidence') * to_decimal(profit_ratio, 'profit_ratio') * policy.kelly_multiplier
            fraction = clamp(fraction, policy.kelly_min_fraction, policy.kelly_max_fraction)
            return truncate(max_position * fraction)
        except (ArithmeticError, DataValidationError, TypeError) as e:
            logger.warning(f"Position sizing failed for {opportunity.id}: {e}, using fallback size")
            return truncate(max_position * policy.sizing_error_fallback_fraction)

    def approve_and_open(
        self,
        opportunity: Opportunity,
        trade_id: Optional[str] = None
    ) -> Tuple[RiskEvaluation, Optional[TradeLog]]:
        """
        Evaluate and, if approved, book a pending trade in one step.

        Returns:
            (evaluation, pending TradeLog or None if rejected)
        """
        with self._lock:
            evaluation = self.evaluate(opportunity)
            if not evaluation.approved:
                return evaluation, None

            trade = TradeLog(
                id=trade_id or f"trade-{uuid.uuid4().hex[:12]}",
                timestamp=self._clock(),
                strategy=opportunity.kind.value,
                status=TradeStatus.PENDING,
                opportunity_id=opportunity.id,
            )
            self.record_trade(trade)
            return evaluation, trade

    # ========================================================================
    # Trade bookkeeping
    # ========================================================================

    def record_trade(self, trade: TradeLog) -> None:
        """
        Apply a trade lifecycle transition.

        pending:  active trades +1, exposure + per-trade unit
        terminal: active trades -1, exposure - unit (both floored at 0);
                  profit - cost credited to daily P&L and returns if profit is set
        """
        with self._lock:
            unit = self.policy.exposure_unit_per_trade
            existing = self._trade_log.get(trade.id)

            if trade.status is TradeStatus.PENDING:
                if existing is not None:
                    logger.warning(f"Trade {trade.id} already recorded, ignoring duplicate pending")
                    return
                self._active_trades += 1
                self._current_exposure += unit
                self._trade_log[trade.id] = trade
                log_trade_event(logger, 'TRADE_STARTED', trade_id=trade.id, strategy=trade.strategy)
                return

            if existing is not None and existing.status.is_terminal:
                logger.warning(f"Trade {trade.id} already {existing.status.value}, ignoring {trade.status.value}")
                return

            self._active_trades = max(0, self._active_trades - 1)
            self._current_exposure = max(ZERO, self._current_exposure - unit)

            if trade.profit is not None:
                net = trade.profit - (trade.cost or ZERO)
                self._daily_pnl += net
                self._returns.append(net)
                if len(self._returns) > RETURN_HISTORY_MAX:
                    self._returns = self._returns[-RETURN_HISTORY_TRIM_TO:]

            # Replaces a pending entry in place, keeping log order
            self._trade_log[trade.id] = trade

            event = 'TRADE_SUCCESS' if trade.status is TradeStatus.SUCCESS else 'TRADE_FAILED'
            log_trade_event(
                logger, event,
                trade_id=trade.id,
                strategy=trade.strategy,
                profit=trade.profit,
                cost=trade.cost,
                error=trade.error,
                duration_ms=trade.duration_ms,
            )

    # ========================================================================
    # Metrics
    # ========================================================================

    def get_risk_metrics(self) -> RiskMetrics:
        """Current metrics; read-only, so repeated calls agree"""
        with self._lock:
            logs = list(self._trade_log.values())
            total = len(logs)
            successes = sum(1 for log in logs if log.status is TradeStatus.SUCCESS)
            profits = [log.profit for log in logs if log.profit is not None]

            return RiskMetrics(
                total_exposure=self._current_exposure,
                daily_pnl=self._daily_pnl,
                win_rate=successes / total if total else 0.0,
                max_drawdown=max_drawdown(profits),
                sharpe_ratio=float(sharpe_ratio(self._returns)),
                current_risk=self._risk_level(self._limits),
            )

    def _utilization(self, limits: RiskLimits) -> Tuple[Decimal, Decimal]:
        exposure_utilization = self._current_exposure / limits.max_position_size
        daily_loss_utilization = max(ZERO, -self._daily_pnl) / limits.max_daily_loss
        return exposure_utilization, daily_loss_utilization

    def _risk_level(self, limits: RiskLimits) -> RiskLevel:
        worst = max(self._utilization(limits))
        if worst > self.policy.high_risk_utilization:
            return RiskLevel.HIGH
        if worst > self.policy.medium_risk_utilization:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def should_emergency_shutdown(self) -> bool:
        """
        True if trading must halt.

        Triggers (any):
        - daily loss beyond the limit
        - high risk level with negative daily P&L
        - win rate below 30% with daily P&L below the absolute loss floor
        - max drawdown beyond 50% of the daily loss limit
        """
        with self._lock:
            self._maybe_reset()
            limits = self._limits
            policy = self.policy
            metrics = self.get_risk_metrics()
            daily_pnl = self._daily_pnl

            reason = None
            if daily_pnl < -limits.max_daily_loss:
                reason = f"Daily loss {daily_pnl} exceeds limit {limits.max_daily_loss}"
            elif metrics.current_risk is RiskLevel.HIGH and daily_pnl < ZERO:
                reason = f"High risk level with negative daily P&L {daily_pnl}"
            elif metrics.win_rate < policy.emergency_min_win_rate and daily_pnl < -policy.emergency_loss_floor:
                reason = f"Win rate {metrics.win_rate:.1%} with daily P&L {daily_pnl}"
            elif metrics.max_drawdown > limits.max_daily_loss * policy.emergency_drawdown_ratio:
                reason = f"Max drawdown {metrics.max_drawdown} exceeds {policy.emergency_drawdown_ratio:.0%} of daily loss limit"

            if reason is None:
                return False

            if reason != self.last_shutdown_reason:
                logger.critical(f"🚨 EMERGENCY SHUTDOWN: {reason}")
            self.last_shutdown_reason = reason
            return True

    def get_risk_summary(self) -> Dict[str, Any]:
        """
        Operator summary with recommendations

        Returns:
            current_risk, daily_pnl, active_trades, exposure and daily-loss
            utilization, metrics and recommendations
        """
        with self._lock:
            limits = self._limits
            metrics = self.get_risk_metrics()
            exposure_utilization, daily_loss_utilization = self._utilization(limits)
            total_trades = len(self._trade_log)

            recommendations = []
            if exposure_utilization > Decimal('0.8'):
                recommendations.append("Consider reducing position sizes")
            if daily_loss_utilization > Decimal('0.7'):
                recommendations.append("Approaching daily loss limit - consider pausing trading")
            if self._active_trades >= limits.max_concurrent_trades * 0.8:
                recommendations.append("High number of concurrent trades")
            if metrics.win_rate < 0.5 and total_trades > 10:
                recommendations.append("Low win rate - review strategy parameters")

            return {
                'current_risk': metrics.current_risk.value,
                'daily_pnl': self._daily_pnl,
                'active_trades': self._active_trades,
                'exposure_utilization': float(exposure_utilization),
                'daily_loss_utilization': float(daily_loss_utilization),
                'metrics': metrics,
                'recommendations': recommendations,
            }

    def get_performance_history(self, days: int = 7) -> Dict[str, Any]:
        """
        Per-UTC-day net P&L over the last `days` days

        Returns:
            daily_pnl (list of {'date', 'pnl'}), cumulative_return,
            volatility (population stddev of daily P&L), max_drawdown
        """
        with self._lock:
            cutoff = self._clock() - days * SECONDS_PER_DAY
            by_day: Dict[str, Decimal] = {}
            for log in self._trade_log.values():
                if log.profit is None or log.timestamp < cutoff:
                    continue
                day = datetime.fromtimestamp(log.timestamp, tz=timezone.utc).date().isoformat()
                by_day[day] = by_day.get(day, ZERO) + log.profit - (log.cost or ZERO)

        daily = [{'date': day, 'pnl': pnl} for day, pnl in sorted(by_day.items())]
        values = [entry['pnl'] for entry in daily]
        return {
            'daily_pnl': daily,
            'cumulative_return': sum(values, ZERO),
            'volatility': decimal_stddev(values),
            'max_drawdown': max_drawdown(values),
        }

    # ========================================================================
    # Limits & daily reset
    # ========================================================================

    def update_risk_limits(self, **changes) -> RiskLimits:
        """
        Replace some risk limits.

        Raises:
            DataValidationError: Unknown field or non-positive value
        """
        known = {f.name for f in fields(RiskLimits)}
        unknown = set(changes) - known
        if unknown:
            raise DataValidationError(
                f"Unknown risk limit(s): {sorted(unknown)}",
                error_code='INVALID_RISK_LIMIT'
            )

        coerced = {}
        for name, value in changes.items():
            if name == 'max_concurrent_trades':
                if isinstance(value, bool) or int(value) != value or int(value) < 1:
                    raise DataValidationError(
                        f"max_concurrent_trades must be a positive integer, got {value!r}",
                        error_code='INVALID_RISK_LIMIT'
                    )
                coerced[name] = int(value)
            else:
                number = to_decimal(value, name)
                if not number.is_finite() or number <= ZERO:
                    raise DataValidationError(
                        f"{name} must be positive, got {value!r}",
                        error_code='INVALID_RISK_LIMIT'
                    )
                coerced[name] = number

        with self._lock:
            self._limits = replace(self._limits, **coerced)
            logger.info(f"Risk limits updated: {coerced}")
            return self._limits

    def _maybe_reset(self) -> None:
        if self._clock() >= self._next_reset:
            self.reset_daily()

    def reset_daily(self) -> None:
        """Zero daily P&L, prune old trade logs, schedule the next reset"""
        with self._lock:
            now = self._clock()
            cutoff = now - self.policy.trade_log_retention_days * SECONDS_PER_DAY
            before = len(self._trade_log)
            self._trade_log = {
                trade_id: log for trade_id, log in self._trade_log.items()
                if log.timestamp >= cutoff
            }
            self._daily_pnl = ZERO
            self._next_reset = next_utc_midnight(now)
            self.last_shutdown_reason = None
            logger.info(
                f"Daily risk reset: pruned {before - len(self._trade_log)} trade logs, "
                f"next reset at {datetime.fromtimestamp(self._next_reset, tz=timezone.utc).isoformat()}"
            )
