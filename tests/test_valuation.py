"""Snapshot valuation tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from portfolio_manager.services.holdings import CapitalInput, OrderInput, fold_ledgers
from portfolio_manager.services.price_feed import PriceQuote
from portfolio_manager.services.valuation import (
    STATUS_LIVE,
    STATUS_STALE,
    STATUS_UNAVAILABLE,
    build_snapshot,
)


def _state(realized_loss: str | None = None):
    capital = [CapitalInput(id=1, type="initial", amount=Decimal("1000"))]
    if realized_loss:
        capital.append(CapitalInput(id=2, type="realized_loss", amount=Decimal(realized_loss)))
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    orders = [
        OrderInput(1, "BTC", "buy", Decimal("0.01"), Decimal("50000"), Decimal("500"), stamp),
        OrderInput(2, "ETH", "buy", Decimal("0.1"), Decimal("2000"), Decimal("200"), stamp),
    ]
    return fold_ledgers(capital, orders)


def _quotes(**prices: str) -> dict[str, PriceQuote]:
    return {symbol: PriceQuote(symbol=symbol, price=Decimal(price)) for symbol, price in prices.items()}


def test_snapshot_values_holdings_and_totals():
    snapshot = build_snapshot(_state(), _quotes(BTC="60000", ETH="1500"))

    assert snapshot.total_capital == Decimal("1000")
    assert snapshot.available_usdt == Decimal("300")
    assert snapshot.total_invested == Decimal("700")
    assert snapshot.current_value == Decimal("750")
    assert snapshot.unrealized_pnl == Decimal("50")
    assert snapshot.total_pnl == Decimal("50")
    assert snapshot.total_pnl_percent == Decimal("5")
    assert snapshot.unavailable_assets == []

    btc, eth = snapshot.holdings
    assert btc.asset == "BTC"
    assert btc.current_value == Decimal("600")
    assert btc.pnl == Decimal("100")
    assert btc.pnl_percent == Decimal("20")
    assert btc.percent_of_capital == Decimal("60")
    assert btc.price_status == STATUS_LIVE
    assert eth.pnl == Decimal("-50")
    assert eth.pnl_percent == Decimal("-25")


def test_realized_loss_lowers_total_pnl_and_raises_capital():
    quotes = _quotes(BTC="60000", ETH="1500")
    base = build_snapshot(_state(), quotes)
    with_loss = build_snapshot(_state(realized_loss="40"), quotes)

    assert with_loss.total_capital - base.total_capital == Decimal("40")
    assert base.total_pnl - with_loss.total_pnl == Decimal("40")
    assert with_loss.available_usdt == base.available_usdt
    assert with_loss.realized_loss == Decimal("40")


def test_missing_quote_marks_holding_unavailable_without_zero_value():
    snapshot = build_snapshot(_state(), {"BTC": PriceQuote(symbol="BTC", price=Decimal("60000")), "ETH": None})

    eth = next(h for h in snapshot.holdings if h.asset == "ETH")
    assert eth.price_status == STATUS_UNAVAILABLE
    assert eth.current_value is None
    assert eth.pnl is None
    assert snapshot.unavailable_assets == ["ETH"]
    assert snapshot.current_value is None
    assert snapshot.unrealized_pnl is None
    assert snapshot.total_pnl is None
    assert snapshot.total_pnl_percent is None
    # Cost-side figures do not depend on prices.
    assert snapshot.total_invested == Decimal("700")


def test_stale_quote_is_used_and_flagged():
    quotes = _quotes(BTC="60000")
    quotes["ETH"] = PriceQuote(symbol="ETH", price=Decimal("1500"), is_stale=True)
    snapshot = build_snapshot(_state(), quotes)

    eth = next(h for h in snapshot.holdings if h.asset == "ETH")
    assert eth.price_status == STATUS_STALE
    assert eth.current_value == Decimal("150")
    assert snapshot.stale_assets == ["ETH"]
    assert snapshot.current_value == Decimal("750")


def test_empty_portfolio_has_zero_percentages():
    snapshot = build_snapshot(fold_ledgers([], []), {})
    assert snapshot.total_capital == 0
    assert snapshot.holdings == []
    assert snapshot.current_value == 0
    assert snapshot.total_pnl_percent == 0
