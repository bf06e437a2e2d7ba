"""Valuation of folded holdings against market quotes."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, getcontext
from typing import Mapping

from .holdings import Holding, LedgerState
from .price_feed import PriceQuote

getcontext().prec = 28

ZERO = Decimal("0")
HUNDRED = Decimal("100")

STATUS_LIVE = "live"
STATUS_STALE = "stale"
STATUS_UNAVAILABLE = "unavailable"


@dataclass
class HoldingValuation:
    asset: str
    amount: Decimal
    average_price: Decimal
    total_cost: Decimal
    current_price: Decimal | None
    current_value: Decimal | None
    pnl: Decimal | None
    pnl_percent: Decimal | None
    percent_of_capital: Decimal | None
    price_status: str
    quote: PriceQuote | None = None


@dataclass
class PortfolioSnapshot:
    total_capital: Decimal
    available_usdt: Decimal
    total_invested: Decimal
    current_value: Decimal | None
    unrealized_pnl: Decimal | None
    realized_loss: Decimal
    total_pnl: Decimal | None
    total_pnl_percent: Decimal | None
    holdings: list[HoldingValuation] = field(default_factory=list)
    unavailable_assets: list[str] = field(default_factory=list)
    stale_assets: list[str] = field(default_factory=list)


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return ZERO
    return part / whole * HUNDRED


def value_holding(
    holding: Holding, quote: PriceQuote | None, total_capital: Decimal
) -> HoldingValuation:
    if quote is None:
        return HoldingValuation(
            asset=holding.asset,
            amount=holding.amount,
            average_price=holding.average_price,
            total_cost=holding.total_cost,
            current_price=None,
            current_value=None,
            pnl=None,
            pnl_percent=None,
            percent_of_capital=None,
            price_status=STATUS_UNAVAILABLE,
        )
    current_value = holding.amount * quote.price
    pnl = current_value - holding.total_cost
    return HoldingValuation(
        asset=holding.asset,
        amount=holding.amount,
        average_price=holding.average_price,
        total_cost=holding.total_cost,
        current_price=quote.price,
        current_value=current_value,
        pnl=pnl,
        pnl_percent=_percent(pnl, holding.total_cost),
        percent_of_capital=_percent(current_value, total_capital),
        price_status=STATUS_STALE if quote.is_stale else STATUS_LIVE,
        quote=quote,
    )


def build_snapshot(
    state: LedgerState, quotes: Mapping[str, PriceQuote | None]
) -> PortfolioSnapshot:
    """Value every open holding and aggregate the portfolio totals.

    A holding without any quote contributes no value; the aggregate value
    figures become ``None`` instead of silently treating it as worth zero.
    """

    cash = state.cash
    total_capital = cash.total_capital
    valuations = [
        value_holding(holding, quotes.get(holding.asset), total_capital)
        for holding in state.open_holdings()
    ]
    unavailable = [v.asset for v in valuations if v.price_status == STATUS_UNAVAILABLE]
    stale = [v.asset for v in valuations if v.price_status == STATUS_STALE]
    total_invested = sum((v.total_cost for v in valuations), ZERO)

    current_value: Decimal | None = None
    unrealized_pnl: Decimal | None = None
    total_pnl: Decimal | None = None
    total_pnl_percent: Decimal | None = None
    if not unavailable:
        current_value = sum((v.current_value for v in valuations), ZERO)
        unrealized_pnl = sum((v.pnl for v in valuations), ZERO)
        total_pnl = unrealized_pnl - cash.realized_loss
        total_pnl_percent = _percent(total_pnl, total_capital)

    return PortfolioSnapshot(
        total_capital=total_capital,
        available_usdt=cash.available_usdt,
        total_invested=total_invested,
        current_value=current_value,
        unrealized_pnl=unrealized_pnl,
        realized_loss=cash.realized_loss,
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl_percent,
        holdings=valuations,
        unavailable_assets=unavailable,
        stale_assets=stale,
    )


__all__ = [
    "HoldingValuation",
    "PortfolioSnapshot",
    "STATUS_LIVE",
    "STATUS_STALE",
    "STATUS_UNAVAILABLE",
    "build_snapshot",
    "value_holding",
]
