"""Error kinds raised by the settlement engine.

Every error is recoverable by the caller: retry with corrected input, or
surface the problem to an operator.
"""

from __future__ import annotations

from typing import Any, Mapping


class SettlementError(Exception):
    """Base class for settlement failures."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class InvalidInput(SettlementError):
    """A single fixture or entry record is malformed."""


class PreconditionViolation(SettlementError):
    """An operation was invoked in a state or with arguments it does not accept."""


class ReconciliationFailure(SettlementError):
    """A payout structure does not balance against its budget."""


class NotFound(SettlementError):
    """Expected data is not available yet."""


__all__ = [
    "InvalidInput",
    "NotFound",
    "PreconditionViolation",
    "ReconciliationFailure",
    "SettlementError",
]
