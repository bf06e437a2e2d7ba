"""Pydantic schemas for the capital and order ledgers and derived views."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CapitalCreateRequest(BaseModel):
    amount: Decimal = Field(..., description="Positive USDT amount", examples=["1000"])
    type: Literal["initial", "dca"] = Field(default="dca")
    description: str | None = Field(default=None, max_length=255)


class CapitalMovementRequest(BaseModel):
    """Body of withdraw and realized-loss requests."""

    amount: Decimal = Field(..., examples=["100"])
    description: str | None = Field(default=None, max_length=255)


class CapitalEntrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    type: str
    description: str | None = None
    created_at: datetime


class OrderCreateRequest(BaseModel):
    asset: str = Field(..., min_length=1, max_length=20, examples=["BTC"])
    type: Literal["buy", "sell"]
    amount: Decimal | None = Field(default=None, description="Quantity of the asset")
    total_usdt: Decimal | None = Field(default=None, description="Notional to spend or receive")
    price: Decimal | None = Field(default=None, description="Per-unit price when is_custom_price is set")
    is_custom_price: bool = False

    @model_validator(mode="after")
    def _check_size_and_price(self) -> "OrderCreateRequest":
        if self.amount is None and self.total_usdt is None:
            raise ValueError("either amount or total_usdt is required")
        if self.is_custom_price and self.price is None:
            raise ValueError("price is required when is_custom_price is set")
        return self


class OrderSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset: str
    type: str
    amount: Decimal
    price: Decimal
    total_usdt: Decimal
    is_custom_price: bool
    created_at: datetime


class HoldingSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    asset: str
    amount: Decimal
    average_price: Decimal
    total_cost: Decimal


class HoldingValuationSchema(HoldingSchema):
    current_price: Decimal | None = None
    current_value: Decimal | None = None
    pnl: Decimal | None = None
    pnl_percent: Decimal | None = None
    percent_of_capital: Decimal | None = None
    price_status: str


class PortfolioSnapshotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_capital: Decimal
    available_usdt: Decimal
    total_invested: Decimal
    current_value: Decimal | None = None
    unrealized_pnl: Decimal | None = None
    realized_loss: Decimal
    total_pnl: Decimal | None = None
    total_pnl_percent: Decimal | None = None
    holdings: list[HoldingValuationSchema]
    unavailable_assets: list[str] = Field(default_factory=list)
    stale_assets: list[str] = Field(default_factory=list)


class AssetDetailSchema(HoldingValuationSchema):
    change_24h: Decimal | None = None
    percent_change_24h: Decimal | None = None
    orders: list[OrderSchema]


class MessageSchema(BaseModel):
    message: str


__all__ = [
    "AssetDetailSchema",
    "CapitalCreateRequest",
    "CapitalEntrySchema",
    "CapitalMovementRequest",
    "HoldingSchema",
    "HoldingValuationSchema",
    "MessageSchema",
    "OrderCreateRequest",
    "OrderSchema",
    "PortfolioSnapshotSchema",
]
