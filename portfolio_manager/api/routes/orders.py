"""Order ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import TradeOrder
from ...schemas import MessageSchema, OrderCreateRequest, OrderSchema
from ...services import orders as order_service
from ...services.errors import PortfolioError, PriceFeedUnavailable
from ...services.price_feed import PriceFeed
from ..dependencies import InternalAuth, get_db_session, get_price_feed, http_error

router = APIRouter(dependencies=[InternalAuth], tags=["orders"])


def serialize_order(order: TradeOrder) -> OrderSchema:
    return OrderSchema(
        id=order.id,
        asset=order.asset,
        type=order.type,
        amount=order.amount,
        price=order.price,
        total_usdt=order.total_usdt,
        is_custom_price=order.is_custom_price,
        created_at=order.created_at,
    )


@router.get("/orders", response_model=list[OrderSchema])
async def get_orders(
    asset: str | None = Query(default=None, description="Only orders for this symbol"),
    session: AsyncSession = Depends(get_db_session),
) -> list[OrderSchema]:
    try:
        orders = await order_service.list_orders(session, asset=asset)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return [serialize_order(order) for order in orders]


@router.post("/orders", response_model=OrderSchema, status_code=status.HTTP_201_CREATED)
async def post_order(
    payload: OrderCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> OrderSchema:
    try:
        if payload.is_custom_price:
            price = payload.price
        else:
            quote = await price_feed.get_quote(payload.asset.strip().upper())
            if quote.is_stale:
                raise PriceFeedUnavailable(
                    f"only a stale price is available for {quote.symbol}", symbol=quote.symbol
                )
            price = quote.price
        order = await order_service.place_order(
            session,
            payload.asset,
            payload.type,
            price,
            amount=payload.amount,
            total_usdt=payload.total_usdt,
            is_custom_price=payload.is_custom_price,
        )
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return serialize_order(order)


@router.delete("/orders/{order_id}", response_model=MessageSchema)
async def delete_order(
    order_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> MessageSchema:
    try:
        await order_service.delete_order(session, order_id)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return MessageSchema(message=f"Order {order_id} deleted")
