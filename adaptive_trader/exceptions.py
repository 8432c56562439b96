"""
Engine Exceptions
=================
Error taxonomy for the decision cycle.

DataUnavailable, GateRejected and LedgerInsufficientFunds describe expected
outcomes and never stop a cycle. ExternalExecutionError aborts a single
instrument's iteration (retried next cycle). InternalInvariantViolation marks
corrupted state and is surfaced at CRITICAL level.
"""


class TradingEngineError(Exception):
    """Base class for all engine errors."""


class DataUnavailable(TradingEngineError):
    """No indicator snapshot could be produced for an instrument."""

    def __init__(self, instrument: str, reason: str = "no market data"):
        super().__init__(f"{instrument}: {reason}")
        self.instrument = instrument
        self.reason = reason


class GateRejected(TradingEngineError):
    """A risk constraint refused the trade."""

    def __init__(self, check, message: str = ""):
        super().__init__(message or f"Rejected by {check.value} check")
        self.check = check


class LedgerInsufficientFunds(TradingEngineError):
    """The virtual ledger does not hold enough available balance."""

    def __init__(self, currency: str, required: float, available: float):
        super().__init__(
            f"Insufficient {currency}: required {required:.8f}, available {available:.8f}"
        )
        self.currency = currency
        self.required = required
        self.available = available


class ExternalExecutionError(TradingEngineError):
    """A collaborator call (market data, order placement) failed or timed out."""


class InternalInvariantViolation(TradingEngineError):
    """Engine state broke one of its invariants (e.g. a negative balance)."""
