"""Price feed client and resilience tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from portfolio_manager.services.errors import PriceFeedUnavailable
from portfolio_manager.services.price_feed import (
    CoinMarketCapClient,
    PriceQuote,
    ReferencePriceFeed,
    ResilientPriceFeed,
    collect_quotes,
    quote_from_usd,
)


class StubResponse:
    def __init__(self, payload: object, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> object:
        return self._payload


class StubClient:
    def __init__(self, payload: object, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code
        self.calls: list[dict[str, object]] = []

    async def get(self, url: str, params: dict[str, object], headers: dict[str, str], timeout: float) -> StubResponse:
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        return StubResponse(self.payload, self.status_code)

    async def aclose(self) -> None:  # pragma: no cover - included for interface completeness
        return None


class FailingClient(StubClient):
    async def get(self, url: str, params: dict[str, object], headers: dict[str, str], timeout: float) -> StubResponse:
        raise httpx.ConnectError("boom")


def _usd(price: float, p1h: float = 0.1, p24h: float = 2.0, p7d: float = 5.0, p30d: float = 10.0) -> dict:
    return {
        "quote": {
            "USD": {
                "price": price,
                "percent_change_1h": p1h,
                "percent_change_24h": p24h,
                "percent_change_7d": p7d,
                "percent_change_30d": p30d,
            }
        }
    }


class ScriptedFeed:
    """Returns or raises the scripted outcomes in order, one per call."""

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def get_quote(self, symbol: str) -> PriceQuote:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(10)
        return PriceQuote(symbol=symbol, price=Decimal(str(outcome)))

    async def list_top_coins(self, limit: int):  # pragma: no cover - unused here
        return []

    async def list_top_quotes(self, limit: int):  # pragma: no cover - unused here
        return []


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_cmc_quote_sends_key_and_derives_changes():
    client = StubClient({"data": {"BTC": _usd(50000.0, p24h=2.0)}})
    cmc = CoinMarketCapClient("secret", client=client)

    quote = await cmc.get_quote("btc")

    call = client.calls[0]
    assert call["headers"]["X-CMC_PRO_API_KEY"] == "secret"
    assert call["params"] == {"symbol": "BTC"}
    assert str(call["url"]).endswith("/v1/cryptocurrency/quotes/latest")
    assert quote.price == Decimal("50000.0")
    assert quote.percent_change_24h == Decimal("2.0")
    assert quote.change_24h == Decimal("1000")


@pytest.mark.asyncio
async def test_cmc_quotes_skip_symbols_without_data():
    client = StubClient({"data": {"BTC": _usd(1.0), "ETH": [_usd(2.0)], "SOL": {"quote": {}}}})
    cmc = CoinMarketCapClient("secret", client=client)

    quotes = await cmc.get_quotes(["BTC", "ETH", "SOL", "XYZ"])

    assert set(quotes) == {"BTC", "ETH"}
    assert quotes["ETH"].price == Decimal("2.0")


@pytest.mark.asyncio
async def test_cmc_errors_become_price_feed_unavailable():
    with pytest.raises(PriceFeedUnavailable):
        await CoinMarketCapClient("secret", client=StubClient({}, status_code=500)).get_quote("BTC")
    with pytest.raises(PriceFeedUnavailable):
        await CoinMarketCapClient("secret", client=FailingClient({})).get_quote("BTC")
    with pytest.raises(PriceFeedUnavailable):
        await CoinMarketCapClient("secret", client=StubClient({"data": {}})).get_quote("BTC")


@pytest.mark.asyncio
async def test_cmc_listings_are_ranked_in_order():
    payload = {
        "data": [
            {"symbol": "BTC", "name": "Bitcoin", **_usd(60000.0)},
            {"symbol": "ETH", "name": "Ethereum", **_usd(3000.0)},
        ]
    }
    client = StubClient(payload)
    cmc = CoinMarketCapClient("secret", client=client)

    coins = await cmc.list_top_coins(2)
    quotes = await cmc.list_top_quotes(2)

    assert [(c.symbol, c.rank) for c in coins] == [("BTC", 1), ("ETH", 2)]
    assert coins[1].name == "Ethereum"
    assert client.calls[0]["params"] == {"limit": 2, "convert": "USD"}
    assert [q.symbol for q in quotes] == ["BTC", "ETH"]


@pytest.mark.asyncio
async def test_reference_feed_prices_known_symbols_only():
    feed = ReferencePriceFeed()

    btc = await feed.get_quote("BTC")
    doge = await feed.get_quote("doge")

    assert btc.price == Decimal("97000")
    assert btc.percent_change_30d == Decimal("12.5")
    assert doge.price == Decimal("0.32")
    assert doge.percent_change_24h == Decimal("2")
    with pytest.raises(PriceFeedUnavailable):
        await feed.get_quote("NOPE")
    assert len(await feed.list_top_coins(20)) == 20
    assert len(await feed.list_top_quotes(20)) == 20


@pytest.mark.asyncio
async def test_resilient_feed_retries_once():
    delegate = ScriptedFeed(PriceFeedUnavailable("flaky"), "101")
    feed = ResilientPriceFeed(delegate, timeout_seconds=1, max_retries=1)

    quote = await feed.get_quote("BTC")

    assert quote.price == Decimal("101")
    assert delegate.calls == 2


@pytest.mark.asyncio
async def test_resilient_feed_gives_up_after_retry_without_history():
    delegate = ScriptedFeed(PriceFeedUnavailable("down"), "hang")
    feed = ResilientPriceFeed(delegate, timeout_seconds=0.05, max_retries=1)

    with pytest.raises(PriceFeedUnavailable):
        await feed.get_quote("BTC")
    assert delegate.calls == 2


@pytest.mark.asyncio
async def test_resilient_feed_serves_cache_then_stale_quote():
    clock = FakeClock()
    delegate = ScriptedFeed("100", PriceFeedUnavailable("down"), PriceFeedUnavailable("down"))
    feed = ResilientPriceFeed(delegate, timeout_seconds=1, max_retries=1, cache_ttl_seconds=10, clock=clock)

    first = await feed.get_quote("ETH")
    cached = await feed.get_quote("ETH")
    assert delegate.calls == 1
    assert cached is first

    clock.now = 60
    stale = await feed.get_quote("ETH")
    assert stale.is_stale
    assert stale.price == Decimal("100")
    assert delegate.calls == 3


@pytest.mark.asyncio
async def test_collect_quotes_maps_failures_to_none():
    feed = ReferencePriceFeed()

    quotes = await collect_quotes(feed, ["BTC", "nope", "btc"])

    assert list(quotes) == ["BTC", "NOPE"]
    assert quotes["BTC"] is not None
    assert quotes["NOPE"] is None


@pytest.mark.asyncio
async def test_malformed_cmc_price_marks_only_that_symbol_unavailable():
    client = StubClient(
        {
            "data": {
                "BTC": {"quote": {"USD": {"price": "n/a"}}},
                "ETH": _usd(3000.0),
                "SOL": {"quote": {"USD": {"price": "NaN"}}},
                "LINK": {"quote": ["unexpected"]},
            }
        }
    )
    cmc = CoinMarketCapClient("secret", client=client)

    quotes = await collect_quotes(cmc, ["BTC", "ETH", "SOL", "LINK"])

    assert quotes["BTC"] is None
    assert quotes["SOL"] is None
    assert quotes["LINK"] is None
    assert quotes["ETH"].price == Decimal("3000.0")


def test_quote_from_usd_rejects_unparseable_fields():
    with pytest.raises(PriceFeedUnavailable):
        quote_from_usd("BTC", {"price": 50000, "percent_change_24h": "abc"})
    with pytest.raises(PriceFeedUnavailable):
        quote_from_usd("BTC", {"price": "-1"})
    with pytest.raises(PriceFeedUnavailable):
        quote_from_usd("BTC", {"price": "Infinity"})


@pytest.mark.asyncio
async def test_cmc_listings_skip_malformed_rows():
    payload = {
        "data": [
            {"symbol": "BTC", "name": "Bitcoin", **_usd(60000.0)},
            {"symbol": "BAD", "name": "Broken", "quote": {"USD": {"price": "??"}}},
            {"symbol": "ETH", "name": "Ethereum", **_usd(3000.0)},
        ]
    }
    cmc = CoinMarketCapClient("secret", client=StubClient(payload))

    coins = await cmc.list_top_coins(3)

    assert [(c.symbol, c.rank) for c in coins] == [("BTC", 1), ("ETH", 3)]


@pytest.mark.asyncio
async def test_resilient_feed_turns_unexpected_errors_into_unavailable():
    delegate = ScriptedFeed(RuntimeError("bug"), KeyError("price"))
    feed = ResilientPriceFeed(delegate, timeout_seconds=1, max_retries=1)

    quotes = await collect_quotes(feed, ["BTC"])

    assert quotes == {"BTC": None}
    assert delegate.calls == 2


@pytest.mark.asyncio
async def test_reference_quotes_and_listings_agree():
    feed = ReferencePriceFeed()

    listed = {coin.symbol: coin.price for coin in await feed.list_top_coins(50)}
    top_quotes = {quote.symbol: quote for quote in await feed.list_top_quotes(50)}

    for symbol, price in listed.items():
        quote = await feed.get_quote(symbol)
        assert quote.price == price
        assert top_quotes[symbol] == replace(quote, fetched_at=top_quotes[symbol].fetched_at)
