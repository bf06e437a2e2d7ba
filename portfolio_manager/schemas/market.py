"""Pydantic schemas for quotes, coin listings and the watchlist."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..services.price_feed import PriceQuote


class PriceQuoteSchema(BaseModel):
    symbol: str
    price: Decimal
    change_1h: Decimal
    percent_change_1h: Decimal
    change_24h: Decimal
    percent_change_24h: Decimal
    change_7d: Decimal
    percent_change_7d: Decimal
    change_30d: Decimal
    percent_change_30d: Decimal
    is_stale: bool = False
    fetched_at: datetime

    @classmethod
    def from_quote(cls, quote: PriceQuote) -> "PriceQuoteSchema":
        return cls(
            symbol=quote.symbol,
            price=quote.price,
            change_1h=quote.change_1h,
            percent_change_1h=quote.percent_change_1h,
            change_24h=quote.change_24h,
            percent_change_24h=quote.percent_change_24h,
            change_7d=quote.change_7d,
            percent_change_7d=quote.percent_change_7d,
            change_30d=quote.change_30d,
            percent_change_30d=quote.percent_change_30d,
            is_stale=quote.is_stale,
            fetched_at=quote.fetched_at,
        )


class CoinListingSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    name: str
    price: Decimal
    rank: int


class WatchlistCreateRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20, description="Coin symbol to track", examples=["DOGE"])
    name: str | None = Field(default=None, max_length=100, description="Optional display name for the coin")


class WatchlistItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    name: str | None = None
    created_at: datetime


__all__ = [
    "CoinListingSchema",
    "PriceQuoteSchema",
    "WatchlistCreateRequest",
    "WatchlistItemSchema",
]
