"""ORM models for the portfolio manager."""

from .ledger import CAPITAL_TYPES, ORDER_TYPES, CapitalEntry, Portfolio, TradeOrder
from .watchlist import WatchlistItem

__all__ = [
    "CAPITAL_TYPES",
    "ORDER_TYPES",
    "CapitalEntry",
    "Portfolio",
    "TradeOrder",
    "WatchlistItem",
]
