"""Holdings, snapshot, asset detail and reset endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...schemas import (
    AssetDetailSchema,
    HoldingSchema,
    HoldingValuationSchema,
    MessageSchema,
    PortfolioSnapshotSchema,
)
from ...services import portfolio as portfolio_service
from ...services.errors import PortfolioError
from ...services.price_feed import PriceFeed
from ...services.valuation import HoldingValuation
from ..dependencies import InternalAuth, get_db_session, get_price_feed, http_error
from .orders import serialize_order

router = APIRouter(dependencies=[InternalAuth], tags=["portfolio"])


def _valuation_fields(valuation: HoldingValuation) -> dict:
    return {
        "asset": valuation.asset,
        "amount": valuation.amount,
        "average_price": valuation.average_price,
        "total_cost": valuation.total_cost,
        "current_price": valuation.current_price,
        "current_value": valuation.current_value,
        "pnl": valuation.pnl,
        "pnl_percent": valuation.pnl_percent,
        "percent_of_capital": valuation.percent_of_capital,
        "price_status": valuation.price_status,
    }


@router.get("/holdings", response_model=list[HoldingSchema])
async def get_holdings(session: AsyncSession = Depends(get_db_session)) -> list[HoldingSchema]:
    holdings = await portfolio_service.get_holdings(session)
    return [
        HoldingSchema(
            asset=h.asset,
            amount=h.amount,
            average_price=h.average_price,
            total_cost=h.total_cost,
        )
        for h in holdings
    ]


@router.get("/portfolio", response_model=PortfolioSnapshotSchema)
async def get_portfolio(
    session: AsyncSession = Depends(get_db_session),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> PortfolioSnapshotSchema:
    snapshot = await portfolio_service.get_portfolio_snapshot(session, price_feed)
    return PortfolioSnapshotSchema(
        total_capital=snapshot.total_capital,
        available_usdt=snapshot.available_usdt,
        total_invested=snapshot.total_invested,
        current_value=snapshot.current_value,
        unrealized_pnl=snapshot.unrealized_pnl,
        realized_loss=snapshot.realized_loss,
        total_pnl=snapshot.total_pnl,
        total_pnl_percent=snapshot.total_pnl_percent,
        holdings=[HoldingValuationSchema(**_valuation_fields(v)) for v in snapshot.holdings],
        unavailable_assets=snapshot.unavailable_assets,
        stale_assets=snapshot.stale_assets,
    )


@router.get("/assets/{symbol}", response_model=AssetDetailSchema)
async def get_asset(
    symbol: str,
    session: AsyncSession = Depends(get_db_session),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> AssetDetailSchema:
    try:
        detail = await portfolio_service.get_asset_detail(session, symbol, price_feed)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    quote = detail.quote
    return AssetDetailSchema(
        **_valuation_fields(detail.valuation),
        change_24h=quote.change_24h if quote else None,
        percent_change_24h=quote.percent_change_24h if quote else None,
        orders=[serialize_order(order) for order in detail.orders],
    )


@router.post("/reset", response_model=MessageSchema)
async def post_reset(session: AsyncSession = Depends(get_db_session)) -> MessageSchema:
    await portfolio_service.reset_all(session)
    return MessageSchema(message="All data has been reset successfully")
