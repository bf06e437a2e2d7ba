"""Entry point for the portfolio manager API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.routes import capital, market, orders, portfolio
from .core.config import PortfolioSettings, get_settings
from .core.logging import setup_logging
from .core.telemetry import setup_telemetry
from .db.init import init_database
from .db.session import get_engine
from .services.price_feed import PriceFeed, build_price_feed

logger = logging.getLogger(__name__)


def create_app(
    settings: PortfolioSettings | None = None,
    *,
    price_feed: PriceFeed | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        engine = get_engine(settings.database_url)
        setup_telemetry(app, settings, engine)
        logger.info("Portfolio manager configuration: %s", settings.dict_for_logging())
        await init_database(engine)
        app.state.price_feed = price_feed or build_price_feed(settings)
        try:
            yield
        finally:
            delegate = getattr(app.state.price_feed, "delegate", None)
            aclose = getattr(delegate, "aclose", None)
            if aclose is not None:
                await aclose()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    for router in (capital.router, orders.router, portfolio.router, market.router):
        app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()


__all__ = ["app", "create_app"]
