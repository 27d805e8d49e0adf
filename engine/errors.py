"""
Error kinds raised by the engine layer.

Every failure the core can produce is a local, recoverable condition. Engine
components raise one of the exceptions below; the application layer turns
them into result objects carrying the matching ``ErrorKind`` so callers never
have to catch framework exceptions.

Nothing here retries. Retry policy belongs to whoever calls the core.
"""
from __future__ import annotations

import math
from enum import Enum


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    FORBIDDEN = "forbidden"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_HOLDINGS = "insufficient_holdings"
    RISK_REJECTED = "risk_rejected"


class MarketError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(MarketError, KeyError):
    """Unknown symbol or order id."""

    kind = ErrorKind.NOT_FOUND


class InvalidArgumentError(MarketError, ValueError):
    """Non-positive quantity, price or amount, or malformed input."""

    kind = ErrorKind.INVALID_ARGUMENT


class InvalidTransitionError(InvalidArgumentError):
    """Order status change not allowed by the order state machine."""


class ForbiddenError(MarketError):
    """Caller does not own the order."""

    kind = ErrorKind.FORBIDDEN


class SettlementError(MarketError):
    """Ledger could not apply a trade. Portfolio is left untouched."""


class InsufficientFundsError(SettlementError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class InsufficientHoldingsError(SettlementError):
    kind = ErrorKind.INSUFFICIENT_HOLDINGS


class RiskRejectedError(MarketError):
    kind = ErrorKind.RISK_REJECTED


def is_positive(value: float) -> bool:
    """True only for finite values > 0; NaN and +/-inf fail."""
    return value > 0 and math.isfinite(value)
