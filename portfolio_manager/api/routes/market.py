"""Price, coin listing and watchlist endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.config import PortfolioSettings
from ...models import WatchlistItem
from ...schemas import (
    CoinListingSchema,
    MessageSchema,
    PriceQuoteSchema,
    WatchlistCreateRequest,
    WatchlistItemSchema,
)
from ...services import watchlist as watchlist_service
from ...services.errors import PortfolioError
from ...services.price_feed import PriceFeed, collect_quotes
from ..dependencies import InternalAuth, get_app_settings, get_db_session, get_price_feed, http_error

router = APIRouter(dependencies=[InternalAuth], tags=["market"])


def _serialize_item(item: WatchlistItem) -> WatchlistItemSchema:
    return WatchlistItemSchema(symbol=item.symbol, name=item.name, created_at=item.created_at)


@router.get("/prices", response_model=dict[str, PriceQuoteSchema])
async def get_prices(
    price_feed: PriceFeed = Depends(get_price_feed),
    settings: PortfolioSettings = Depends(get_app_settings),
) -> dict[str, PriceQuoteSchema]:
    quotes = await collect_quotes(price_feed, settings.tracked_symbols)
    return {symbol: PriceQuoteSchema.from_quote(q) for symbol, q in quotes.items() if q is not None}


@router.get("/prices/{symbol}", response_model=PriceQuoteSchema)
async def get_price(symbol: str, price_feed: PriceFeed = Depends(get_price_feed)) -> PriceQuoteSchema:
    try:
        quote = await price_feed.get_quote(symbol.strip().upper())
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return PriceQuoteSchema.from_quote(quote)


@router.get("/coins/top", response_model=list[CoinListingSchema])
async def get_top_coins(
    limit: int = Query(default=100, ge=1, le=5000),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> list[CoinListingSchema]:
    try:
        coins = await price_feed.list_top_coins(limit)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return [CoinListingSchema(symbol=c.symbol, name=c.name, price=c.price, rank=c.rank) for c in coins]


@router.get("/coins/top20", response_model=list[PriceQuoteSchema])
async def get_top20_coins(price_feed: PriceFeed = Depends(get_price_feed)) -> list[PriceQuoteSchema]:
    try:
        quotes = await price_feed.list_top_quotes(20)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return [PriceQuoteSchema.from_quote(q) for q in quotes]


@router.get("/watchlist", response_model=list[WatchlistItemSchema])
async def get_watchlist(session: AsyncSession = Depends(get_db_session)) -> list[WatchlistItemSchema]:
    items = await watchlist_service.list_watchlist(session)
    return [_serialize_item(item) for item in items]


@router.post("/watchlist", response_model=WatchlistItemSchema, status_code=status.HTTP_201_CREATED)
async def post_watchlist(
    payload: WatchlistCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> WatchlistItemSchema:
    try:
        item = await watchlist_service.upsert_watchlist_item(session, payload.symbol, payload.name)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return _serialize_item(item)


@router.get("/watchlist/prices", response_model=list[PriceQuoteSchema])
async def get_watchlist_prices(
    session: AsyncSession = Depends(get_db_session),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> list[PriceQuoteSchema]:
    quotes = await watchlist_service.watchlist_quotes(session, price_feed)
    return [PriceQuoteSchema.from_quote(q) for q in quotes]


@router.delete("/watchlist/{symbol}", response_model=MessageSchema)
async def delete_watchlist(
    symbol: str,
    session: AsyncSession = Depends(get_db_session),
) -> MessageSchema:
    try:
        await watchlist_service.remove_watchlist_item(session, symbol)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return MessageSchema(message=f"{symbol.upper()} removed from watchlist")
