"""
Execution Gateway - Hand-off Boundary to the Settlement Layer

The engine never builds or signs transactions. An approved, possibly
resized opportunity is handed to an ExecutionGateway, which returns an
ExecutionResult:
    success, realized_profit?, cost?, error?, duration_ms

The deadline carried by the opportunity is advisory; gateways may refuse
expired work by returning a failed result.

PaperExecutionGateway fills every opportunity at its expected profit ratio and
gas estimate without touching any venue. It backs the paper-trading
entry point and the scan-loop tests.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import List

from core.models import ExecutionResult, Opportunity
from utils.exceptions import ExecutionError
from utils.helpers import truncate
from utils.logger import get_logger, log_error_with_context


logger = get_logger(__name__)


class ExecutionGateway(ABC):
    """Settlement-layer collaborator"""

    @abstractmethod
    async def execute(self, opportunity: Opportunity) -> ExecutionResult:
        """
        Execute an approved opportunity

        Raises:
            ExecutionError: If the hand-off itself fails; recorded as a failed trade
        """
        pass

    async def close(self) -> None:
        pass


class PaperExecutionGateway(ExecutionGateway):
    """
    Simulated fills for paper trading.

    Realized profit = profit ratio x executed size, so a trade clamped by
    the risk controller books proportionally less; the gas estimate is
    reported as cost.
    """

    def __init__(self, latency_sec: float = 0.0, reject_expired: bool = True):
        """
        Args:
            latency_sec: Simulated settlement latency
            reject_expired: Return a failed result for opportunities past their deadline
        """
        self.latency_sec = latency_sec
        self.reject_expired = reject_expired
        self.executed: List[str] = []

    async def execute(self, opportunity: Opportunity) -> ExecutionResult:
        started = time.monotonic()

        if self.reject_expired and opportunity.is_expired():
            return ExecutionResult(
                success=False,
                duration_ms=(time.monotonic() - started) * 1000,
                error="Opportunity deadline passed",
            )

        if self.latency_sec:
            await asyncio.sleep(self.latency_sec)

        profit = truncate(opportunity.profit_ratio * opportunity.trade_amount)

        self.executed.append(opportunity.id)
        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"📝 Paper fill {opportunity.id}: size {opportunity.trade_amount}, "
            f"profit {profit:.6f}, gas {opportunity.gas_estimate}"
        )
        return ExecutionResult(
            success=True,
            duration_ms=duration_ms,
            realized_profit=profit,
            cost=opportunity.gas_estimate,
            reference=f"paper-{len(self.executed)}",
        )


async def execute_safely(gateway: ExecutionGateway, opportunity: Opportunity) -> ExecutionResult:
    """
    Run a gateway and turn hand-off failures into a failed result.

    A pending trade must always reach a terminal state, so any exception
    from the gateway becomes success=False.
    """
    started = time.monotonic()
    try:
        return await gateway.execute(opportunity)
    except ExecutionError as e:
        logger.error(f"Execution hand-off failed for {opportunity.id}: {e}")
        error = e.message
    except Exception as e:
        log_error_with_context(logger, "Unexpected execution failure", e, opportunity_id=opportunity.id)
        error = f"{type(e).__name__}: {e}"
    return ExecutionResult(
        success=False,
        duration_ms=(time.monotonic() - started) * 1000,
        error=error,
    )
