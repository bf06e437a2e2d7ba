"""Shared FastAPI dependencies for the portfolio manager."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import PortfolioSettings, get_settings
from ..db.session import get_session
from ..services.errors import (
    ConflictError,
    InsufficientFundsError,
    InsufficientPositionError,
    LedgerValidationError,
    NotFoundError,
    PortfolioError,
    PriceFeedUnavailable,
    ProtectedEntryError,
)
from ..services.price_feed import PriceFeed, build_price_feed


async def get_db_session() -> AsyncIterator[AsyncSession]:
    async for session in get_session():  # pragma: no cover - FastAPI dependency wrapper
        yield session


def get_app_settings(request: Request) -> PortfolioSettings:
    """Settings the running app was created with."""

    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_price_feed(request: Request) -> PriceFeed:
    feed = getattr(request.app.state, "price_feed", None)
    if feed is None:
        feed = build_price_feed(get_app_settings(request))
        request.app.state.price_feed = feed
    return feed


def verify_internal_token(
    request: Request, x_internal_token: str | None = Header(default=None)
) -> None:
    settings = get_app_settings(request)
    if settings.internal_auth_token is None:
        return
    if x_internal_token != settings.internal_auth_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token")


InternalAuth = Depends(verify_internal_token)

_STATUS_BY_ERROR: tuple[tuple[type[PortfolioError], int], ...] = (
    (LedgerValidationError, status.HTTP_400_BAD_REQUEST),
    (InsufficientFundsError, status.HTTP_400_BAD_REQUEST),
    (InsufficientPositionError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ProtectedEntryError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PriceFeedUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: PortfolioError) -> HTTPException:
    """Translate a ledger or price-feed error into an HTTP error response."""

    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


__all__ = ["InternalAuth", "get_app_settings", "get_db_session", "get_price_feed", "http_error"]
