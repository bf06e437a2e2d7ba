"""Portfolio, capital ledger and order ledger models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base import Base

CAPITAL_TYPES = ("initial", "dca", "withdraw", "realized_loss")
ORDER_TYPES = ("buy", "sell")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Portfolio(Base):
    __tablename__ = "portfolio"

    id: Mapped[int] = mapped_column(primary_key=True)
    base_currency: Mapped[str] = mapped_column(String(10), default="USDT")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    capital_entries: Mapped[list["CapitalEntry"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )
    orders: Mapped[list["TradeOrder"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )


class CapitalEntry(Base):
    __tablename__ = "capital_entry"
    __table_args__ = (Index("ix_capital_entry_portfolio_created", "portfolio_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    amount: Mapped[Decimal] = mapped_column(Numeric(28, 8))
    type: Mapped[str] = mapped_column(Enum(*CAPITAL_TYPES, name="capital_type"))
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    portfolio: Mapped[Portfolio] = relationship(back_populates="capital_entries")


class TradeOrder(Base):
    __tablename__ = "trade_order"
    __table_args__ = (
        Index("ix_trade_order_portfolio_asset", "portfolio_id", "asset"),
        Index("ix_trade_order_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    asset: Mapped[str] = mapped_column(String(20))
    type: Mapped[str] = mapped_column(Enum(*ORDER_TYPES, name="order_type"))
    amount: Mapped[Decimal] = mapped_column(Numeric(28, 8))
    price: Mapped[Decimal] = mapped_column(Numeric(28, 8))
    total_usdt: Mapped[Decimal] = mapped_column(Numeric(28, 8))
    is_custom_price: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    portfolio: Mapped[Portfolio] = relationship(back_populates="orders")
