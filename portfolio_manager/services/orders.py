"""Order ledger: buy and sell orders against the cash and position folds."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import telemetry
from ..models import ORDER_TYPES, TradeOrder
from .errors import (
    ConflictError,
    InsufficientFundsError,
    InsufficientPositionError,
    LedgerValidationError,
    NotFoundError,
)
from .holdings import ZERO, normalize_asset, quantize_price, resolve_order_size
from .portfolio import ensure_portfolio, ledger_transaction, load_state

logger = logging.getLogger(__name__)


async def list_orders(session: AsyncSession, asset: str | None = None) -> list[TradeOrder]:
    portfolio = await ensure_portfolio(session)
    stmt = select(TradeOrder).where(TradeOrder.portfolio_id == portfolio.id)
    if asset:
        stmt = stmt.where(TradeOrder.asset == normalize_asset(asset))
    result = await session.execute(
        stmt.order_by(TradeOrder.created_at.desc(), TradeOrder.id.desc())
    )
    return list(result.scalars().all())


async def place_order(
    session: AsyncSession,
    asset: str,
    order_type: str,
    price: Decimal,
    *,
    amount: Decimal | None = None,
    total_usdt: Decimal | None = None,
    is_custom_price: bool = False,
) -> TradeOrder:
    """Append an order once cash (buy) or position (sell) covers it.

    ``price`` is rounded to ledger precision before sizing; callers resolve
    market prices before calling when ``is_custom_price`` is false.
    """

    symbol = normalize_asset(asset)
    if order_type not in ORDER_TYPES:
        raise LedgerValidationError(f"order type must be one of {', '.join(ORDER_TYPES)}")
    price = quantize_price(price)
    quantity, notional = resolve_order_size(price, amount=amount, total_usdt=total_usdt)

    async with ledger_transaction(session, "place_order") as portfolio:
        state = await load_state(session, portfolio.id)
        if order_type == "sell":
            held = state.holdings[symbol].amount if symbol in state.holdings else ZERO
            if quantity > held:
                logger.info("Rejected sell of %s %s with %s held", quantity, symbol, held)
                raise InsufficientPositionError(
                    f"Insufficient {symbol} balance: requested {quantity}, held {held}",
                    asset=symbol,
                    required=quantity,
                    available=held,
                )
        else:
            available = state.cash.available_usdt
            if notional > available:
                logger.info("Rejected buy of %s %s for %s with %s available", quantity, symbol, notional, available)
                raise InsufficientFundsError(
                    f"Insufficient USDT balance: requested {notional}, available {available}",
                    required=notional,
                    available=available,
                )
        order = TradeOrder(
            portfolio_id=portfolio.id,
            asset=symbol,
            type=order_type,
            amount=quantity,
            price=price,
            total_usdt=notional,
            is_custom_price=is_custom_price,
        )
        session.add(order)
        await session.flush()
        await session.refresh(order)
        logger.info(
            "Placed %s order %s: %s %s @ %s (custom=%s)",
            order_type,
            order.id,
            quantity,
            symbol,
            price,
            is_custom_price,
        )
        telemetry.portfolio_metrics.ledger_write("orders", "append", order_type)
    return order


async def delete_order(session: AsyncSession, order_id: int) -> None:
    """Remove an order if the remaining ledgers still replay cleanly.

    Every later sell must stay covered and every later withdrawal or buy
    must stay funded by the cash available at its point in time.
    """

    async with ledger_transaction(session, "delete_order") as portfolio:
        order = await session.get(TradeOrder, order_id)
        if order is None or order.portfolio_id != portfolio.id:
            raise NotFoundError(f"Order {order_id} not found")
        try:
            await load_state(session, portfolio.id, exclude_order_id=order_id, replay=True)
        except InsufficientPositionError as exc:
            logger.info("Refused to delete order %s: %s", order_id, exc.message)
            raise ConflictError(
                f"Deleting order {order_id} would leave a later {exc.asset} sell uncovered"
            ) from exc
        except InsufficientFundsError as exc:
            logger.info("Refused to delete order %s: %s", order_id, exc.message)
            raise ConflictError(
                f"Deleting order {order_id} would leave a later outflow unfunded: {exc.message}"
            ) from exc
        await session.delete(order)
        logger.info("Deleted %s order %s for %s", order.type, order_id, order.asset)
        telemetry.portfolio_metrics.ledger_write("orders", "delete", order.type)


__all__ = ["delete_order", "list_orders", "place_order"]
