"""Watchlist of symbols tracked for prices only."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import WatchlistItem
from .errors import NotFoundError
from .holdings import normalize_asset
from .price_feed import PriceFeed, PriceQuote, collect_quotes

logger = logging.getLogger(__name__)


async def list_watchlist(session: AsyncSession) -> list[WatchlistItem]:
    result = await session.execute(
        select(WatchlistItem).order_by(WatchlistItem.created_at.desc(), WatchlistItem.id.desc())
    )
    return list(result.scalars().all())


async def upsert_watchlist_item(
    session: AsyncSession, symbol: str, name: str | None = None
) -> WatchlistItem:
    normalized = normalize_asset(symbol)
    result = await session.execute(select(WatchlistItem).where(WatchlistItem.symbol == normalized))
    item = result.scalars().first()
    if item is None:
        item = WatchlistItem(symbol=normalized, name=name.strip() if name else None)
        session.add(item)
        logger.info("Added %s to watchlist", normalized)
    elif name:
        item.name = name.strip()
    await session.commit()
    await session.refresh(item)
    return item


async def remove_watchlist_item(session: AsyncSession, symbol: str) -> None:
    normalized = normalize_asset(symbol)
    result = await session.execute(select(WatchlistItem).where(WatchlistItem.symbol == normalized))
    item = result.scalars().first()
    if item is None:
        raise NotFoundError(f"{normalized} is not on the watchlist")
    await session.delete(item)
    await session.commit()
    logger.info("Removed %s from watchlist", normalized)


async def watchlist_quotes(session: AsyncSession, price_feed: PriceFeed) -> list[PriceQuote]:
    """Quote every watched symbol, skipping the ones the feed cannot price."""

    items = await list_watchlist(session)
    quotes = await collect_quotes(price_feed, [item.symbol for item in items])
    return [quote for quote in quotes.values() if quote is not None]


__all__ = ["list_watchlist", "remove_watchlist_item", "upsert_watchlist_item", "watchlist_quotes"]
