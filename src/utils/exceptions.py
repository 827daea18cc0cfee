"""
Custom Exception Classes for the Arbitrage Engine

Provides hierarchy of specific exceptions for different failure scenarios.
Detector-level absence of data is never an exception (detectors return
None); these classes cover invalid inputs, internal faults and halts.

Exception Hierarchy:
├── ArbitrageBotError (Base)
│   ├── ConfigurationError
│   ├── DataValidationError
│   ├── ExternalDataError
│   ├── StrategyError
│   ├── RiskEvaluationError
│   ├── ExecutionError
│   └── CircuitBreakerError
"""

from typing import Optional, Dict, Any


class ArbitrageBotError(Exception):
    """
    Base exception for all engine errors.
    All other exceptions inherit from this.
    Enables catching all engine errors with: except ArbitrageBotError
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize engine error with structured information.

        Args:
            message: Human-readable error message
            error_code: Error code for classification (e.g., 'INVALID_AMOUNT')
            details: Additional context dict
            original_error: Original exception that caused this (for error chaining)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        error_str = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            error_str += f" (Code: {self.error_code})"
        if self.details:
            error_str += f" | Details: {self.details}"
        return error_str


# ============================================================================
# CONFIGURATION & INPUT ERRORS
# ============================================================================

class ConfigurationError(ArbitrageBotError):
    """
    Raised when configuration is invalid or incomplete.
    Examples: unreadable snapshot file, inconsistent limits
    Action: Fix configuration and restart
    """
    pass


class DataValidationError(ArbitrageBotError):
    """
    Raised when a direct input violates a contract.
    Examples: non-positive trade amount, inverted optimizer bounds,
    malformed snapshot entry
    """
    pass


class ExternalDataError(ArbitrageBotError):
    """
    Raised by an external price source when a request fails.
    Always swallowed by the price feed and turned into "no price".
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        symbol: Optional[str] = None,
        **kwargs
    ):
        self.source = source
        self.symbol = symbol
        super().__init__(message, **kwargs)


# ============================================================================
# STRATEGY, RISK & EXECUTION ERRORS
# ============================================================================

class StrategyError(ArbitrageBotError):
    """
    Raised when a strategy encounters an error during a scan.
    Examples: unknown opportunity kind routed to a strategy
    """
    pass


class RiskEvaluationError(ArbitrageBotError):
    """
    Raised internally when a risk evaluation cannot be completed.
    The risk controller converts it into a rejection; a candidate is
    never approved after this error.
    """
    pass


class ExecutionError(ArbitrageBotError):
    """
    Raised by an execution gateway when a hand-off fails outright.
    Recorded as a terminal 'failed' trade.
    """

    def __init__(
        self,
        message: str,
        opportunity_id: Optional[str] = None,
        **kwargs
    ):
        self.opportunity_id = opportunity_id
        super().__init__(message, **kwargs)


class CircuitBreakerError(ArbitrageBotError):
    """
    Raised when emergency shutdown is triggered (e.g., daily loss limit exceeded).
    The scan loop stops issuing evaluations; in-flight executions complete.

    Action: Stop trading, review losses, restart after reset
    """

    def __init__(
        self,
        message: str,
        daily_pnl: Optional[float] = None,
        threshold: Optional[float] = None,
        **kwargs
    ):
        self.daily_pnl = daily_pnl
        self.threshold = threshold
        super().__init__(message, **kwargs)
