"""
Arbitrage Bot - Scan Loop Orchestration

Lifecycle:
    initialize()  -> refresh market data, build the registry and detectors
    run()         -> scan loop + price refresh loop + status loop until stopped
    stop()        -> end the loops; the scan cycle in progress still
                     records every booked trade before run() returns
    shutdown()    -> close collaborators, log final statistics

Scan cycle (single writer of risk state):
    1. Halt with CircuitBreakerError if the risk controller calls for
       emergency shutdown
    2. Collect candidates from every enabled detector
    3. Rank all candidates (gas filter, profit ratio, confidence), keep top N
    4. For each, in rank order: drop if expired, otherwise evaluate and book
       a pending trade atomically
    5. Execute approved trades concurrently; each result is recorded as a
       terminal trade before the cycle ends

Price refresh runs on its own slower loop and only swaps the snapshot.
"""

import asyncio
import signal
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from config.constants import (
    DEFAULT_MONITORED_PAIRS,
    DEFAULT_TRIANGULAR_CYCLES,
    EXECUTION_TIMES_MAX,
    EXECUTION_TIMES_TRIM_TO,
)
from core.execution_gateway import ExecutionGateway, execute_safely
from core.models import ExecutionResult, Opportunity, RiskLimits, TradeLog, TradeStatus
from core.ranking import OpportunityRanker
from core.registry import PathRegistry
from core.risk_controller import RiskController
from strategies.base_strategy import ArbitrageStrategy
from strategies.cross_venue_strategy import CrossVenueStrategy
from strategies.triangular_strategy import TriangularStrategy
from utils.exceptions import ArbitrageBotError, CircuitBreakerError, StrategyError
from utils.helpers import ZERO
from utils.logger import get_logger


logger = get_logger(__name__)


class ArbitrageBot:
    """
    Detection-to-execution orchestrator

    Owns the detectors, ranker and risk controller; market data and
    execution are injected collaborators.
    """

    def __init__(
        self,
        settings,
        market_data,
        gateway: ExecutionGateway,
        risk_controller: Optional[RiskController] = None,
        registry: Optional[PathRegistry] = None,
        strategies: Optional[List[ArbitrageStrategy]] = None,
    ):
        """
        Args:
            settings: TradingSettings
            market_data: MarketDataProvider
            gateway: Execution hand-off
            risk_controller: Risk engine (built from settings if omitted)
            registry: Path/pair registry (built on initialize() if omitted)
            strategies: Detectors (built on initialize() if omitted)
        """
        self.settings = settings
        self.market_data = market_data
        self.gateway = gateway
        self.risk_controller = risk_controller or RiskController(settings.risk_limits())
        self.registry = registry or PathRegistry()
        self.strategies: List[ArbitrageStrategy] = list(strategies or [])
        self.ranker = OpportunityRanker(settings.min_profit_threshold)

        self.is_running = False
        self.start_time: Optional[float] = None
        self.last_scan_time: Optional[float] = None
        self._shutdown_event = asyncio.Event()

        # Execution statistics
        self.total_trades = 0
        self.successful_trades = 0
        self.total_profit = ZERO
        self.total_cost = ZERO
        self._execution_times: List[float] = []

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """Load the first market snapshot and build registry + detectors"""
        logger.info("Initializing arbitrage engine...")
        await self.market_data.refresh()

        if not self.strategies:
            self.registry.build(
                self.market_data.get_all_instruments(),
                self.market_data.get_all_prices(),
                cycles=DEFAULT_TRIANGULAR_CYCLES,
                monitored_pairs=DEFAULT_MONITORED_PAIRS,
            )
            s = self.settings
            self.strategies = [
                TriangularStrategy(
                    self.market_data,
                    self.registry,
                    min_profit_threshold=s.min_profit_threshold,
                    min_trade_amount=s.min_trade_amount,
                    max_trade_amount=s.max_trade_amount,
                    opportunity_ttl_sec=s.opportunity_ttl_sec,
                    enabled=s.triangular_enabled,
                ),
                CrossVenueStrategy(
                    self.market_data,
                    list(self.registry.pairs),
                    min_profit_threshold=s.min_profit_threshold,
                    min_expected_profit=s.min_expected_profit,
                    opportunity_ttl_sec=s.opportunity_ttl_sec,
                    enabled=s.cross_venue_enabled,
                ),
            ]
        logger.info(f"Engine initialized with strategies: {[st.name for st in self.strategies]}")

    def install_signal_handlers(self) -> None:
        """Stop gracefully on SIGINT/SIGTERM"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
        self.stop()

    def stop(self) -> None:
        self.is_running = False
        if not self._shutdown_event.is_set():
            self._shutdown_event.set()

    async def run(self) -> None:
        """
        Run until stopped or emergency shutdown.

        Raises:
            CircuitBreakerError: If the risk controller halted trading
        """
        if self.is_running:
            logger.warning("Bot is already running")
            return

        self.is_running = True
        self.start_time = time.time()
        self._shutdown_event.clear()

        limits = self.risk_controller.limits
        logger.info("=" * 80)
        logger.info("Starting Arbitrage Engine")
        logger.info(f"Active Strategies: {[s.name for s in self.strategies if s.enabled]}")
        logger.info(f"Max Position: {limits.max_position_size} | Max Daily Loss: {limits.max_daily_loss}")
        logger.info("=" * 80)

        scan_task = asyncio.create_task(self._scan_loop())
        tasks = [
            scan_task,
            asyncio.create_task(self._price_refresh_loop()),
            asyncio.create_task(self._status_loop()),
            asyncio.create_task(self._shutdown_event.wait()),
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

            # The scan task is never cancelled: trades booked in the current
            # cycle must reach a terminal record before shutdown
            self.stop()
            await asyncio.wait([scan_task])

            for task in tasks:
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
            for task in tasks:
                if task.cancelled():
                    continue
                error = task.exception()
                if error is not None:
                    raise error
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Close collaborators and log final statistics"""
        self.is_running = False
        for resource in (self.market_data, self.gateway):
            close = getattr(resource, 'close', None)
            if close is not None:
                try:
                    await close()
                except Exception as e:
                    logger.error(f"Error closing {type(resource).__name__}: {e}")
        self._log_final_stats()

    # ========================================================================
    # Loops
    # ========================================================================

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _scan_loop(self) -> None:
        logger.info(f"Scan loop started (interval: {self.settings.scan_interval_sec}s)")
        while self.is_running:
            try:
                await self.scan_once()
            except CircuitBreakerError:
                self.is_running = False
                raise
            except ArbitrageBotError as e:
                logger.error(f"Scan cycle failed: {e}")
            await self._sleep(self.settings.scan_interval_sec)

    async def _price_refresh_loop(self) -> None:
        while self.is_running:
            await self._sleep(self.settings.price_refresh_interval_sec)
            if not self.is_running:
                break
            try:
                await self.market_data.refresh()
            except ArbitrageBotError as e:
                logger.error(f"Price refresh failed: {e}")

    async def _status_loop(self) -> None:
        while self.is_running:
            await self._sleep(self.settings.status_log_interval_sec)
            if not self.is_running:
                break
            summary = self.risk_controller.get_risk_summary()
            metrics = self.get_system_metrics()
            logger.info(
                f"📊 Status: risk={summary['current_risk']} daily_pnl={summary['daily_pnl']} "
                f"active={summary['active_trades']} trades={metrics['total_trades']} "
                f"profit={metrics['total_profit']}",
                extra={'recommendations': summary['recommendations']}
            )

    # ========================================================================
    # Scan cycle
    # ========================================================================

    async def collect_opportunities(self) -> List[Opportunity]:
        candidates: List[Opportunity] = []
        for strategy in self.strategies:
            if not strategy.enabled:
                continue
            try:
                candidates.extend(await strategy.find_opportunities())
            except StrategyError as e:
                logger.error(f"Strategy {strategy.name} scan failed: {e}")
        return candidates

    async def scan_once(self) -> List[ExecutionResult]:
        """
        Run one detection/evaluation/execution cycle.

        Returns:
            Execution results of the approved opportunities

        Raises:
            CircuitBreakerError: If emergency shutdown is required
        """
        self._check_emergency()

        candidates = await self.collect_opportunities()
        ranked = self.ranker.rank(candidates)[:self.settings.max_opportunities_per_scan]
        self.last_scan_time = time.time()

        executions = []
        for opportunity in ranked:
            if opportunity.is_expired():
                logger.info(f"Dropping expired opportunity {opportunity.id}")
                continue
            if self.risk_controller.should_emergency_shutdown():
                logger.critical("Emergency shutdown observed mid-scan, no further evaluations")
                break

            evaluation, trade = self.risk_controller.approve_and_open(opportunity)
            if not evaluation.approved:
                continue
            if evaluation.adjusted_amount is not None:
                opportunity = opportunity.with_trade_amount(evaluation.adjusted_amount)
            executions.append(self._execute(opportunity, trade))

        if not executions:
            return []
        return list(await asyncio.gather(*executions))

    def _check_emergency(self) -> None:
        if self.risk_controller.should_emergency_shutdown():
            daily_pnl = self.risk_controller.daily_pnl
            raise CircuitBreakerError(
                f"Emergency shutdown: {self.risk_controller.last_shutdown_reason}",
                daily_pnl=float(daily_pnl),
                threshold=float(self.risk_controller.limits.max_daily_loss),
                error_code='EMERGENCY_SHUTDOWN'
            )

    async def _execute(self, opportunity: Opportunity, trade: TradeLog) -> ExecutionResult:
        result = await execute_safely(self.gateway, opportunity)

        terminal = replace(
            trade,
            status=TradeStatus.SUCCESS if result.success else TradeStatus.FAILED,
            profit=result.realized_profit if result.success else None,
            cost=result.cost,
            error=result.error,
            duration_ms=result.duration_ms,
        )
        self.risk_controller.record_trade(terminal)
        self._record_execution(result)
        return result

    def _record_execution(self, result: ExecutionResult) -> None:
        self.total_trades += 1
        if result.success:
            self.successful_trades += 1
            self.total_profit += result.realized_profit or ZERO
        self.total_cost += result.cost or ZERO
        self._execution_times.append(result.duration_ms)
        if len(self._execution_times) > EXECUTION_TIMES_MAX:
            self._execution_times = self._execution_times[-EXECUTION_TIMES_TRIM_TO:]

    # ========================================================================
    # Operator controls
    # ========================================================================

    def get_strategy(self, name: str) -> ArbitrageStrategy:
        for strategy in self.strategies:
            if strategy.name == name:
                return strategy
        raise StrategyError(f"Unknown strategy: {name}", error_code='UNKNOWN_STRATEGY')

    def set_strategy_enabled(self, name: str, enabled: bool) -> None:
        self.get_strategy(name).update_config({'enabled': enabled})
        logger.info(f"Strategy {name} {'enabled' if enabled else 'disabled'}")

    def update_strategy(self, name: str, config: Dict[str, Any]) -> None:
        """Update a strategy's enable flag and/or min_profit_threshold"""
        self.get_strategy(name).update_config(config)

    def update_risk_limits(self, **changes) -> RiskLimits:
        return self.risk_controller.update_risk_limits(**changes)

    def get_risk_summary(self) -> Dict[str, Any]:
        return self.risk_controller.get_risk_summary()

    def get_system_metrics(self) -> Dict[str, Any]:
        times = self._execution_times
        return {
            'uptime_sec': time.time() - self.start_time if self.start_time else 0.0,
            'total_trades': self.total_trades,
            'successful_trades': self.successful_trades,
            'total_profit': self.total_profit,
            'total_cost': self.total_cost,
            'average_execution_ms': sum(times) / len(times) if times else 0.0,
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'uptime_sec': time.time() - self.start_time if self.start_time else 0.0,
            'strategies': {s.name: s.enabled for s in self.strategies},
            'last_scan_time': self.last_scan_time,
        }

    def _log_final_stats(self) -> None:
        """Log final statistics on shutdown"""
        metrics = self.get_system_metrics()
        logger.info("=" * 80)
        logger.info("ENGINE FINAL STATISTICS")
        logger.info("=" * 80)
        logger.info(f"Uptime: {metrics['uptime_sec']:.0f}s")
        logger.info(f"Trades: {metrics['successful_trades']}/{metrics['total_trades']} successful")
        logger.info(f"Total Profit: {metrics['total_profit']} | Total Cost: {metrics['total_cost']}")
        logger.info(f"Daily P&L: {self.risk_controller.daily_pnl}")
        logger.info("=" * 80)
