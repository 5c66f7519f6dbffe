"""
Error taxonomy for the solver.

- ProtocolError: malformed or unexpected feed message. Logged, the session
  keeps running.
- ConfigError: missing or invalid configuration. Fatal at startup.
- QuoteError: simulation unavailable or token unresolvable. Suppresses the
  bid for one intent.
- ExecutionError: settlement path failures, escalated to the operator.
"""

from typing import Optional


class SolverError(Exception):
    """Base class for all solver errors."""


# =============================================================================
# Protocol
# =============================================================================


class ProtocolError(SolverError):
    """Malformed or unexpected auction feed message."""


class RegistrationRejected(ProtocolError):
    """The auction service refused the solver registration."""


class IntentDesync(ProtocolError):
    """An auction result references an intent this solver never stored."""

    def __init__(self, intent_id: str):
        super().__init__(f"Auction result for unknown intent {intent_id}")
        self.intent_id = intent_id


class UnsupportedOperationError(ProtocolError):
    """Operation variant (Lend, Borrow, ...) that the solver cannot handle."""

    def __init__(self, operation: str):
        super().__init__(f"Unsupported operation: {operation}")
        self.operation = operation


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(SolverError):
    """Missing or invalid required configuration."""


class MissingConfig(ConfigError):
    def __init__(self, name: str):
        super().__init__(f"{name} must be set")
        self.name = name


class UnknownToken(ConfigError):
    def __init__(self, symbol: str, chain: str):
        super().__init__(f"Token {symbol} is not registered on {chain}")
        self.symbol = symbol
        self.chain = chain


# =============================================================================
# Quoting
# =============================================================================


class QuoteError(SolverError):
    """Quote could not be computed; the intent is skipped."""


class SimulationFailed(QuoteError):
    """Price router could not simulate a swap leg."""


# =============================================================================
# Execution
# =============================================================================


class ExecutionError(SolverError):
    """
    Settlement-path failure.

    Attributes:
        intent_id: Intent being settled
        step: Settlement step that failed
        cause: Underlying error, if any
    """

    step = "unknown"

    def __init__(self, intent_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"[{intent_id}] {self.step}: {message}")
        self.intent_id = intent_id
        self.cause = cause


class PreSwapFailed(ExecutionError):
    """Bridging token -> token_out swap failed. Nothing reached the user."""
    step = "rebalance_out"


class SettlementFailed(ExecutionError):
    """Escrow release failed. The pre-swap may be sunk; manual action needed."""
    step = "release_funds"


class RebalanceFailed(ExecutionError):
    """token_in -> bridging token swap failed after the user was paid."""
    step = "rebalance_in"


class ExecutionTimeout(ExecutionError):
    """
    A settlement step did not confirm within the polling bound.

    Treated as a failure of ``step``; the transaction may still land later.
    """

    def __init__(
        self,
        intent_id: str,
        message: str,
        cause: Optional[BaseException] = None,
        step: str = "confirmation",
    ):
        self.step = step
        super().__init__(intent_id, message, cause)
