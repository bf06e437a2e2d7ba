"""Exceptions raised by the portfolio ledgers and the price feed."""

from __future__ import annotations

from decimal import Decimal


class PortfolioError(Exception):
    """Base class for every business-rule failure in the portfolio core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LedgerValidationError(PortfolioError, ValueError):
    """Input failed validation before touching the ledgers."""


class InsufficientFundsError(PortfolioError):
    """Available cash does not cover the requested outflow."""

    def __init__(self, message: str, *, required: Decimal, available: Decimal):
        super().__init__(message)
        self.required = required
        self.available = available


class InsufficientPositionError(PortfolioError):
    """A sell exceeds the quantity held for the asset."""

    def __init__(self, message: str, *, asset: str, required: Decimal, available: Decimal):
        super().__init__(message)
        self.asset = asset
        self.required = required
        self.available = available


class ConflictError(PortfolioError):
    """Removing a ledger row would leave the remaining ledger inconsistent."""


class ProtectedEntryError(PortfolioError):
    """The capital entry type cannot be deleted."""


class NotFoundError(PortfolioError, LookupError):
    """The referenced ledger row or asset does not exist."""


class PriceFeedUnavailable(PortfolioError, RuntimeError):
    """No quote could be obtained for a symbol."""

    def __init__(self, message: str, *, symbol: str | None = None):
        super().__init__(message)
        self.symbol = symbol


__all__ = [
    "ConflictError",
    "InsufficientFundsError",
    "InsufficientPositionError",
    "LedgerValidationError",
    "NotFoundError",
    "PortfolioError",
    "PriceFeedUnavailable",
    "ProtectedEntryError",
]
