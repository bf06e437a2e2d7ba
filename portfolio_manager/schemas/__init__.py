"""Schema exports for the portfolio manager."""

from .ledger import (
    AssetDetailSchema,
    CapitalCreateRequest,
    CapitalEntrySchema,
    CapitalMovementRequest,
    HoldingSchema,
    HoldingValuationSchema,
    MessageSchema,
    OrderCreateRequest,
    OrderSchema,
    PortfolioSnapshotSchema,
)
from .market import CoinListingSchema, PriceQuoteSchema, WatchlistCreateRequest, WatchlistItemSchema

__all__ = [
    "AssetDetailSchema",
    "CapitalCreateRequest",
    "CapitalEntrySchema",
    "CapitalMovementRequest",
    "CoinListingSchema",
    "HoldingSchema",
    "HoldingValuationSchema",
    "MessageSchema",
    "OrderCreateRequest",
    "OrderSchema",
    "PortfolioSnapshotSchema",
    "PriceQuoteSchema",
    "WatchlistCreateRequest",
    "WatchlistItemSchema",
]
