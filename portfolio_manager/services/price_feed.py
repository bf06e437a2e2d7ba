"""Market quotes from CoinMarketCap, a built-in reference table, and a resilient wrapper."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

import httpx
from opentelemetry import trace

from ..core import telemetry
from ..core.config import PortfolioSettings
from .errors import PriceFeedUnavailable

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

CMC_BASE_URL = "https://pro-api.coinmarketcap.com"
QUOTES_PATH = "/v1/cryptocurrency/quotes/latest"
LISTINGS_PATH = "/v1/cryptocurrency/listings/latest"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PriceQuote:
    """Latest USD price of a symbol with its relative moves."""

    symbol: str
    price: Decimal
    percent_change_1h: Decimal = ZERO
    percent_change_24h: Decimal = ZERO
    percent_change_7d: Decimal = ZERO
    percent_change_30d: Decimal = ZERO
    fetched_at: datetime = field(default_factory=_utcnow)
    is_stale: bool = False

    @property
    def change_1h(self) -> Decimal:
        return self.price * self.percent_change_1h / HUNDRED

    @property
    def change_24h(self) -> Decimal:
        return self.price * self.percent_change_24h / HUNDRED

    @property
    def change_7d(self) -> Decimal:
        return self.price * self.percent_change_7d / HUNDRED

    @property
    def change_30d(self) -> Decimal:
        return self.price * self.percent_change_30d / HUNDRED

    def as_stale(self) -> "PriceQuote":
        return replace(self, is_stale=True)


@dataclass(frozen=True)
class CoinListing:
    symbol: str
    name: str
    price: Decimal
    rank: int


class PriceFeed(Protocol):
    """Pluggable quote provider."""

    async def get_quote(self, symbol: str) -> PriceQuote:
        ...

    async def list_top_coins(self, limit: int) -> list[CoinListing]:
        ...

    async def list_top_quotes(self, limit: int) -> list[PriceQuote]:
        ...


def _decimal(value: Any, symbol: str, name: str) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise PriceFeedUnavailable(f"malformed {name} for {symbol}: {value!r}", symbol=symbol)
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise PriceFeedUnavailable(f"malformed {name} for {symbol}: {value!r}", symbol=symbol) from exc
    if not number.is_finite():
        raise PriceFeedUnavailable(f"non-finite {name} for {symbol}: {value!r}", symbol=symbol)
    return number


def quote_from_usd(symbol: str, usd: Mapping[str, Any]) -> PriceQuote:
    """Build a quote from a CoinMarketCap ``quote.USD`` object.

    Raises ``PriceFeedUnavailable`` when the price is missing, malformed or
    not positive, or when a percent change cannot be parsed.
    """

    if usd.get("price") is None:
        raise PriceFeedUnavailable(f"no USD price for {symbol}", symbol=symbol)
    price = _decimal(usd["price"], symbol, "price")
    if price <= 0:
        raise PriceFeedUnavailable(f"non-positive USD price for {symbol}: {price}", symbol=symbol)
    return PriceQuote(
        symbol=symbol,
        price=price,
        percent_change_1h=_decimal(usd.get("percent_change_1h"), symbol, "percent_change_1h"),
        percent_change_24h=_decimal(usd.get("percent_change_24h"), symbol, "percent_change_24h"),
        percent_change_7d=_decimal(usd.get("percent_change_7d"), symbol, "percent_change_7d"),
        percent_change_30d=_decimal(usd.get("percent_change_30d"), symbol, "percent_change_30d"),
    )


def _usd_block(entry: Any) -> dict[str, Any] | None:
    if not isinstance(entry, dict):
        return None
    quote = entry.get("quote")
    usd = quote.get("USD") if isinstance(quote, dict) else None
    return usd if isinstance(usd, dict) else None


class CoinMarketCapClient:
    """Thin async client for the CoinMarketCap pro API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = CMC_BASE_URL,
        timeout_seconds: float = 10.0,
        listing_timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("CoinMarketCap API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.listing_timeout_seconds = listing_timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get(self, path: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        if self._client is None:
            self._client = httpx.AsyncClient()
        headers = {"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"}
        try:
            response = await self._client.get(
                f"{self.base_url}{path}", params=params, headers=headers, timeout=timeout
            )
        except httpx.HTTPError as exc:
            raise PriceFeedUnavailable(f"Failed to reach CoinMarketCap: {exc}") from exc

        if response.status_code >= 400:
            raise PriceFeedUnavailable(f"CoinMarketCap error {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise PriceFeedUnavailable("CoinMarketCap returned invalid JSON payload") from exc
        if not isinstance(payload, dict):
            raise PriceFeedUnavailable("CoinMarketCap response is not an object")
        return payload

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, PriceQuote]:
        """Quote several symbols in one request.

        Symbols without data, or whose data cannot be parsed, are omitted.
        """

        wanted = [s.upper() for s in symbols]
        if not wanted:
            return {}
        payload = await self._get(QUOTES_PATH, {"symbol": ",".join(wanted)}, self.timeout_seconds)
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise PriceFeedUnavailable("CoinMarketCap quotes response has no symbol map")
        quotes: dict[str, PriceQuote] = {}
        for symbol in wanted:
            entry = data.get(symbol)
            # v2-style payloads key each symbol to a list of matching coins
            if isinstance(entry, list):
                entry = entry[0] if entry else None
            usd = _usd_block(entry)
            if usd is None or usd.get("price") is None:
                continue
            try:
                quotes[symbol] = quote_from_usd(symbol, usd)
            except PriceFeedUnavailable as exc:
                logger.warning("Skipping CoinMarketCap quote: %s", exc)
        return quotes

    async def get_quote(self, symbol: str) -> PriceQuote:
        symbol = symbol.upper()
        quotes = await self.get_quotes([symbol])
        if symbol not in quotes:
            raise PriceFeedUnavailable(f"CoinMarketCap has no quote for {symbol}", symbol=symbol)
        return quotes[symbol]

    async def _listings(self, limit: int) -> list[tuple[int, str, dict[str, Any], PriceQuote]]:
        """Ranked listing rows with a parseable USD quote; malformed rows are skipped."""

        payload = await self._get(
            LISTINGS_PATH, {"limit": limit, "convert": "USD"}, self.listing_timeout_seconds
        )
        data = payload.get("data")
        if not isinstance(data, list):
            raise PriceFeedUnavailable("CoinMarketCap listings response is not a list")
        rows: list[tuple[int, str, dict[str, Any], PriceQuote]] = []
        for rank, item in enumerate(data, start=1):
            if not isinstance(item, dict) or not item.get("symbol"):
                continue
            symbol = str(item["symbol"]).upper()
            usd = _usd_block(item)
            if usd is None:
                continue
            try:
                rows.append((rank, symbol, item, quote_from_usd(symbol, usd)))
            except PriceFeedUnavailable as exc:
                logger.warning("Skipping CoinMarketCap listing: %s", exc)
        return rows

    async def list_top_coins(self, limit: int) -> list[CoinListing]:
        return [
            CoinListing(symbol=symbol, name=str(item.get("name") or symbol), price=quote.price, rank=rank)
            for rank, symbol, item, quote in await self._listings(limit)
        ]

    async def list_top_quotes(self, limit: int) -> list[PriceQuote]:
        return [quote for _, _, _, quote in await self._listings(limit)]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# Used whenever no CoinMarketCap API key is configured. Quotes and listings
# both read their prices from REFERENCE_COINS.
REFERENCE_COINS: list[CoinListing] = [
    CoinListing("BTC", "Bitcoin", Decimal("97000"), 1),
    CoinListing("ETH", "Ethereum", Decimal("3400"), 2),
    CoinListing("USDT", "Tether", Decimal("1"), 3),
    CoinListing("BNB", "BNB", Decimal("600"), 4),
    CoinListing("SOL", "Solana", Decimal("190"), 5),
    CoinListing("XRP", "XRP", Decimal("2.2"), 6),
    CoinListing("USDC", "USD Coin", Decimal("1"), 7),
    CoinListing("ADA", "Cardano", Decimal("0.9"), 8),
    CoinListing("AVAX", "Avalanche", Decimal("35"), 9),
    CoinListing("DOGE", "Dogecoin", Decimal("0.32"), 10),
    CoinListing("DOT", "Polkadot", Decimal("7"), 11),
    CoinListing("TRX", "TRON", Decimal("0.25"), 12),
    CoinListing("LINK", "Chainlink", Decimal("23"), 13),
    CoinListing("MATIC", "Polygon", Decimal("0.5"), 14),
    CoinListing("SHIB", "Shiba Inu", Decimal("0.000022"), 15),
    CoinListing("LTC", "Litecoin", Decimal("100"), 16),
    CoinListing("BCH", "Bitcoin Cash", Decimal("450"), 17),
    CoinListing("ATOM", "Cosmos", Decimal("9"), 18),
    CoinListing("UNI", "Uniswap", Decimal("12"), 19),
    CoinListing("XLM", "Stellar", Decimal("0.4"), 20),
    CoinListing("ONDO", "Ondo", Decimal("1.35"), 50),
]

# 1h, 24h, 7d and 30d percent changes for the tracked symbols.
REFERENCE_CHANGES: dict[str, tuple[str, str, str, str]] = {
    "BTC": ("0.3", "2.1", "5.2", "12.5"),
    "ETH": ("0.5", "3.2", "8.1", "18.3"),
    "SOL": ("1.2", "5.5", "15.3", "35.2"),
    "ONDO": ("0.8", "4.2", "12.1", "28.5"),
    "LINK": ("0.6", "3.8", "9.5", "22.1"),
}
REFERENCE_DEFAULT_CHANGES = ("0.5", "2", "5", "10")


def _reference_quote(coin: CoinListing, changes: Iterable[str]) -> PriceQuote:
    pct_1h, pct_24h, pct_7d, pct_30d = (Decimal(c) for c in changes)
    return PriceQuote(
        symbol=coin.symbol,
        price=coin.price,
        percent_change_1h=pct_1h,
        percent_change_24h=pct_24h,
        percent_change_7d=pct_7d,
        percent_change_30d=pct_30d,
    )


class ReferencePriceFeed:
    """Static quotes for development and offline use.

    Symbols outside the table raise ``PriceFeedUnavailable`` rather than
    being priced at a placeholder value.
    """

    def __init__(
        self,
        coins: Sequence[CoinListing] | None = None,
        changes: Mapping[str, tuple[str, str, str, str]] | None = None,
    ) -> None:
        self._coins = list(REFERENCE_COINS if coins is None else coins)
        self._by_symbol = {coin.symbol: coin for coin in self._coins}
        self._changes = dict(REFERENCE_CHANGES if changes is None else changes)

    def _quote(self, coin: CoinListing) -> PriceQuote:
        return _reference_quote(coin, self._changes.get(coin.symbol, REFERENCE_DEFAULT_CHANGES))

    async def get_quote(self, symbol: str) -> PriceQuote:
        symbol = symbol.upper()
        coin = self._by_symbol.get(symbol)
        if coin is None:
            raise PriceFeedUnavailable(f"no reference price for {symbol}", symbol=symbol)
        return self._quote(coin)

    async def list_top_coins(self, limit: int) -> list[CoinListing]:
        return self._coins[:limit]

    async def list_top_quotes(self, limit: int) -> list[PriceQuote]:
        return [self._quote(coin) for coin in self._coins[:limit]]


@dataclass
class _CachedQuote:
    quote: PriceQuote
    stored_at: float


class ResilientPriceFeed:
    """Timeout, bounded retry, short TTL cache and last-known fallback around a feed."""

    def __init__(
        self,
        delegate: PriceFeed,
        *,
        timeout_seconds: float = 10.0,
        max_retries: int = 1,
        cache_ttl_seconds: float = 10.0,
        listing_timeout_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.delegate = delegate
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.cache_ttl_seconds = cache_ttl_seconds
        self.listing_timeout_seconds = listing_timeout_seconds
        self._clock = clock
        self._cache: dict[str, _CachedQuote] = {}

    def _fresh(self, symbol: str) -> PriceQuote | None:
        cached = self._cache.get(symbol)
        if cached is None:
            return None
        if self._clock() - cached.stored_at < self.cache_ttl_seconds:
            return cached.quote
        return None

    async def _fetch(self, symbol: str) -> PriceQuote:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.wait_for(
                    self.delegate.get_quote(symbol), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning("Quote for %s timed out (attempt %s)", symbol, attempt + 1)
            except PriceFeedUnavailable as exc:
                last_error = exc
                logger.warning("Quote for %s failed (attempt %s): %s", symbol, attempt + 1, exc)
            except Exception as exc:
                # Feed bugs and malformed data count as a failed attempt for this symbol.
                last_error = exc
                logger.exception("Quote for %s raised unexpectedly (attempt %s)", symbol, attempt + 1)
        raise PriceFeedUnavailable(
            f"price feed could not quote {symbol}: {last_error}", symbol=symbol
        ) from last_error

    async def get_quote(self, symbol: str) -> PriceQuote:
        symbol = symbol.upper()
        fresh = self._fresh(symbol)
        if fresh is not None:
            telemetry.portfolio_metrics.quote("cached")
            return fresh
        with tracer.start_as_current_span("price_feed.get_quote") as span:
            span.set_attribute("price_feed.symbol", symbol)
            try:
                quote = await self._fetch(symbol)
            except PriceFeedUnavailable:
                cached = self._cache.get(symbol)
                if cached is None:
                    span.set_attribute("price_feed.unavailable", True)
                    telemetry.portfolio_metrics.quote("unavailable")
                    raise
                logger.warning("Serving last known quote for %s from %s", symbol, cached.quote.fetched_at)
                span.set_attribute("price_feed.stale", True)
                telemetry.portfolio_metrics.quote("stale")
                return cached.quote.as_stale()
        self._cache[symbol] = _CachedQuote(quote=quote, stored_at=self._clock())
        telemetry.portfolio_metrics.quote("live")
        return quote

    async def list_top_coins(self, limit: int) -> list[CoinListing]:
        try:
            return await asyncio.wait_for(
                self.delegate.list_top_coins(limit), timeout=self.listing_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise PriceFeedUnavailable("coin listing timed out") from exc

    async def list_top_quotes(self, limit: int) -> list[PriceQuote]:
        try:
            return await asyncio.wait_for(
                self.delegate.list_top_quotes(limit), timeout=self.listing_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise PriceFeedUnavailable("coin listing timed out") from exc

    def invalidate(self, symbol: str | None = None) -> None:
        if symbol:
            self._cache.pop(symbol.upper(), None)
        else:
            self._cache.clear()


async def collect_quotes(feed: PriceFeed, symbols: Iterable[str]) -> dict[str, PriceQuote | None]:
    """Quote ``symbols`` concurrently; a symbol the feed cannot price maps to ``None``."""

    unique = list(dict.fromkeys(s.upper() for s in symbols))

    async def _one(symbol: str) -> PriceQuote | None:
        try:
            return await feed.get_quote(symbol)
        except PriceFeedUnavailable as exc:
            logger.warning("No quote available for %s: %s", symbol, exc)
            return None

    results = await asyncio.gather(*(_one(symbol) for symbol in unique))
    return dict(zip(unique, results))


def build_price_feed(settings: PortfolioSettings) -> ResilientPriceFeed:
    """Create the process price feed from settings."""

    delegate: PriceFeed
    if settings.cmc_api_key:
        delegate = CoinMarketCapClient(
            settings.cmc_api_key,
            base_url=settings.cmc_base_url,
            timeout_seconds=settings.price_feed_timeout_seconds,
        )
    else:
        logger.info("No CoinMarketCap API key configured; using reference prices")
        delegate = ReferencePriceFeed()
    return ResilientPriceFeed(
        delegate,
        timeout_seconds=settings.price_feed_timeout_seconds,
        max_retries=settings.price_feed_max_retries,
        cache_ttl_seconds=settings.price_cache_ttl_seconds,
    )


__all__ = [
    "CoinListing",
    "CoinMarketCapClient",
    "PriceFeed",
    "PriceQuote",
    "ReferencePriceFeed",
    "ResilientPriceFeed",
    "build_price_feed",
    "collect_quotes",
    "quote_from_usd",
]
