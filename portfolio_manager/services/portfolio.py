"""Portfolio lookup, ledger loading and the read-side views."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from opentelemetry import trace
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import telemetry
from ..models import CapitalEntry, Portfolio, TradeOrder
from .errors import NotFoundError, PortfolioError
from .holdings import (
    CapitalInput,
    Holding,
    LedgerState,
    OrderInput,
    fold_ledgers,
    normalize_asset,
    replay_ledgers,
)
from .price_feed import PriceFeed, PriceQuote, collect_quotes
from .valuation import HoldingValuation, PortfolioSnapshot, build_snapshot, value_holding

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# asyncio locks bind to one event loop, so they are kept per running loop.
_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[object, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _loop_lock(key: object) -> asyncio.Lock:
    locks = _LOCKS.setdefault(asyncio.get_running_loop(), {})
    lock = locks.get(key)
    if lock is None:
        lock = locks[key] = asyncio.Lock()
    return lock


def portfolio_lock(portfolio_id: int) -> asyncio.Lock:
    """Return the in-process mutation lock for ``portfolio_id``."""

    return _loop_lock(("portfolio", portfolio_id))


async def ensure_portfolio(session: AsyncSession) -> Portfolio:
    result = await session.execute(select(Portfolio).order_by(Portfolio.id).limit(1))
    portfolio = result.scalars().first()
    if portfolio is not None:
        return portfolio
    async with _loop_lock("create"):
        result = await session.execute(select(Portfolio).order_by(Portfolio.id).limit(1))
        portfolio = result.scalars().first()
        if portfolio is not None:
            return portfolio
        portfolio = Portfolio()
        session.add(portfolio)
        await session.commit()
        await session.refresh(portfolio)
        logger.info("Created portfolio %s", portfolio.id)
        return portfolio


@asynccontextmanager
async def ledger_transaction(session: AsyncSession, operation: str) -> AsyncIterator[Portfolio]:
    """Serialize a validate-then-write mutation of the portfolio ledgers.

    The body runs under the per-portfolio lock with the portfolio row locked
    for update; it commits on success and rolls back on any error. Business
    rule failures are counted per ``operation``.
    """

    portfolio = await ensure_portfolio(session)
    with tracer.start_as_current_span(f"ledger.{operation}") as span:
        span.set_attribute("portfolio.id", portfolio.id)
        async with portfolio_lock(portfolio.id):
            try:
                await session.execute(
                    select(Portfolio.id).where(Portfolio.id == portfolio.id).with_for_update()
                )
                yield portfolio
                await session.commit()
            except PortfolioError as exc:
                await session.rollback()
                telemetry.portfolio_metrics.rejected(operation, exc)
                span.set_attribute("ledger.rejected", type(exc).__name__)
                raise
            except BaseException:
                await session.rollback()
                raise


def to_capital_input(entry: CapitalEntry) -> CapitalInput:
    return CapitalInput(id=entry.id, type=entry.type, amount=entry.amount, created_at=entry.created_at)


def to_order_input(order: TradeOrder) -> OrderInput:
    return OrderInput(
        id=order.id,
        asset=order.asset,
        type=order.type,
        amount=order.amount,
        price=order.price,
        total_usdt=order.total_usdt,
        created_at=order.created_at,
    )


async def load_capital_entries(session: AsyncSession, portfolio_id: int) -> list[CapitalEntry]:
    result = await session.execute(
        select(CapitalEntry)
        .where(CapitalEntry.portfolio_id == portfolio_id)
        .order_by(CapitalEntry.created_at, CapitalEntry.id)
    )
    return list(result.scalars().all())


async def load_orders(
    session: AsyncSession, portfolio_id: int, *, asset: str | None = None
) -> list[TradeOrder]:
    stmt = select(TradeOrder).where(TradeOrder.portfolio_id == portfolio_id)
    if asset is not None:
        stmt = stmt.where(TradeOrder.asset == asset)
    result = await session.execute(stmt.order_by(TradeOrder.created_at, TradeOrder.id))
    return list(result.scalars().all())


async def load_state(
    session: AsyncSession,
    portfolio_id: int,
    *,
    exclude_capital_id: int | None = None,
    exclude_order_id: int | None = None,
    replay: bool = False,
) -> LedgerState:
    """Fold both ledgers, optionally as if one row had never been written.

    With ``replay`` the ledgers are walked in time order and cash is checked
    after every withdrawal and buy.
    """

    entries = await load_capital_entries(session, portfolio_id)
    orders = await load_orders(session, portfolio_id)
    fold = replay_ledgers if replay else fold_ledgers
    return fold(
        (to_capital_input(e) for e in entries if e.id != exclude_capital_id),
        (to_order_input(o) for o in orders if o.id != exclude_order_id),
    )


async def _read_state(session: AsyncSession) -> LedgerState:
    portfolio = await ensure_portfolio(session)
    # Waiting on the mutation lock keeps reads off half-applied writes.
    async with portfolio_lock(portfolio.id):
        return await load_state(session, portfolio.id)


async def get_holdings(session: AsyncSession) -> list[Holding]:
    state = await _read_state(session)
    return state.open_holdings()


async def get_portfolio_snapshot(session: AsyncSession, price_feed: PriceFeed) -> PortfolioSnapshot:
    state = await _read_state(session)
    quotes = await collect_quotes(price_feed, [h.asset for h in state.open_holdings()])
    snapshot = build_snapshot(state, quotes)
    if snapshot.unavailable_assets:
        logger.warning("Snapshot without prices for %s", ", ".join(snapshot.unavailable_assets))
    return snapshot


@dataclass
class AssetDetail:
    valuation: HoldingValuation
    quote: PriceQuote | None
    orders: list[TradeOrder]


async def get_asset_detail(session: AsyncSession, symbol: str, price_feed: PriceFeed) -> AssetDetail:
    """Valuation of one asset together with its order history, newest first."""

    asset = normalize_asset(symbol)
    portfolio = await ensure_portfolio(session)
    async with portfolio_lock(portfolio.id):
        state = await load_state(session, portfolio.id)
        orders = await load_orders(session, portfolio.id, asset=asset)
    if not orders:
        raise NotFoundError(f"No holdings for {asset}")
    holding = state.holdings.get(asset, Holding(asset=asset))
    quotes = await collect_quotes(price_feed, [asset])
    quote = quotes.get(asset)
    valuation = value_holding(holding, quote, state.cash.total_capital)
    return AssetDetail(valuation=valuation, quote=quote, orders=list(reversed(orders)))


async def reset_all(session: AsyncSession) -> None:
    """Clear both ledgers; the watchlist is left untouched."""

    async with ledger_transaction(session, "reset") as portfolio:
        orders = await session.execute(delete(TradeOrder).where(TradeOrder.portfolio_id == portfolio.id))
        entries = await session.execute(
            delete(CapitalEntry).where(CapitalEntry.portfolio_id == portfolio.id)
        )
    logger.info(
        "Reset portfolio %s: removed %s orders and %s capital entries",
        portfolio.id,
        orders.rowcount,
        entries.rowcount,
    )


__all__ = [
    "AssetDetail",
    "ensure_portfolio",
    "get_asset_detail",
    "get_holdings",
    "get_portfolio_snapshot",
    "ledger_transaction",
    "load_state",
    "portfolio_lock",
    "reset_all",
]
