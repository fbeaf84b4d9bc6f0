"""Typed errors for the backtesting engine."""

from __future__ import annotations

from .types import RejectReason


class BacktestError(Exception):
    """Base class for backtesting errors."""


class ConfigurationError(BacktestError):
    """Raised before the run starts when the run configuration is unusable."""


class DataError(BacktestError):
    """Raised when the bar timeline breaks its ordering contract."""


class LedgerError(BacktestError):
    """Raised when applying a fill would break a ledger invariant."""


class OrderRejected(BacktestError):
    """A single order cannot be executed this bar. Never fatal to the run."""

    def __init__(self, reason: RejectReason, message: str = "") -> None:
        super().__init__(f"{reason.value}: {message}" if message else reason.value)
        self.reason = reason
        self.message = message
