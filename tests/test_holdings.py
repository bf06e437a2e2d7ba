"""Ledger fold tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from portfolio_manager.services.errors import (
    InsufficientFundsError,
    InsufficientPositionError,
    LedgerValidationError,
)
from portfolio_manager.services.holdings import (
    CapitalInput,
    OrderInput,
    fold_ledgers,
    fold_orders,
    quantize_price,
    replay_ledgers,
    resolve_order_size,
    summarize_cash,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _order(order_id: int, asset: str, kind: str, amount: str, price: str, minutes: int | None = None) -> OrderInput:
    qty = Decimal(amount)
    px = Decimal(price)
    return OrderInput(
        id=order_id,
        asset=asset,
        type=kind,
        amount=qty,
        price=px,
        total_usdt=qty * px,
        created_at=T0 + timedelta(minutes=order_id if minutes is None else minutes),
    )


def test_buy_then_partial_sell_keeps_average_price():
    holdings = fold_orders(
        [
            _order(1, "BTC", "buy", "0.01", "50000"),
            _order(2, "BTC", "sell", "0.005", "60000"),
        ]
    )
    btc = holdings["BTC"]
    assert btc.amount == Decimal("0.005")
    assert btc.average_price == Decimal("50000")
    assert btc.total_cost == Decimal("250")


def test_weighted_average_across_buys():
    holdings = fold_orders(
        [
            _order(1, "ETH", "buy", "1", "3000"),
            _order(2, "ETH", "buy", "1", "4000"),
        ]
    )
    assert holdings["ETH"].average_price == Decimal("3500")
    assert holdings["ETH"].total_cost == Decimal("7000")


def test_sell_then_buy_back_at_average_restores_average():
    base = [_order(1, "SOL", "buy", "4", "100"), _order(2, "SOL", "buy", "4", "200")]
    before = fold_orders(base)["SOL"]
    after = fold_orders(
        base
        + [
            _order(3, "SOL", "sell", "3", "500"),
            _order(4, "SOL", "buy", "3", str(before.average_price)),
        ]
    )["SOL"]
    assert after.amount == before.amount
    assert after.average_price == before.average_price


def test_selling_whole_position_resets_cost():
    holdings = fold_orders(
        [_order(1, "LINK", "buy", "3", "10"), _order(2, "LINK", "sell", "3", "12")]
    )
    link = holdings["LINK"]
    assert link.amount == 0
    assert link.average_price == 0
    assert link.total_cost == 0


def test_oversell_raises_insufficient_position():
    with pytest.raises(InsufficientPositionError) as excinfo:
        fold_orders([_order(1, "ETH", "buy", "1", "3000"), _order(2, "ETH", "sell", "2", "3000")])
    assert excinfo.value.required == Decimal("2")
    assert excinfo.value.available == Decimal("1")


def test_fold_uses_created_at_then_id_order():
    # The sell has the lower id but is stamped after the buy.
    holdings = fold_orders(
        [
            _order(1, "BTC", "sell", "1", "100", minutes=10),
            _order(2, "BTC", "buy", "2", "50", minutes=5),
        ]
    )
    assert holdings["BTC"].amount == Decimal("1")

    tied = fold_orders(
        [
            _order(2, "BTC", "sell", "1", "100", minutes=5),
            _order(1, "BTC", "buy", "1", "50", minutes=5),
        ]
    )
    assert tied["BTC"].amount == 0


def test_cash_summary_follows_capital_and_orders():
    capital = [
        CapitalInput(id=1, type="initial", amount=Decimal("1000")),
        CapitalInput(id=2, type="dca", amount=Decimal("200")),
        CapitalInput(id=3, type="withdraw", amount=Decimal("100")),
        CapitalInput(id=4, type="realized_loss", amount=Decimal("50")),
    ]
    orders = [_order(1, "BTC", "buy", "0.01", "50000"), _order(2, "BTC", "sell", "0.005", "60000")]
    cash = summarize_cash(capital, orders)
    assert cash.available_usdt == Decimal("1000") + 200 - 100 - 500 + 300
    assert cash.total_capital == Decimal("1150")
    assert cash.realized_loss == Decimal("50")


def test_realized_loss_does_not_touch_available_cash():
    base = [CapitalInput(id=1, type="initial", amount=Decimal("1000"))]
    without_loss = fold_ledgers(base, [])
    with_loss = fold_ledgers(base + [CapitalInput(id=2, type="realized_loss", amount=Decimal("75"))], [])
    assert with_loss.cash.available_usdt == without_loss.cash.available_usdt
    assert with_loss.cash.total_capital - without_loss.cash.total_capital == Decimal("75")


def test_open_holdings_skip_closed_positions():
    state = fold_ledgers(
        [CapitalInput(id=1, type="initial", amount=Decimal("1000"))],
        [
            _order(1, "LINK", "buy", "3", "10"),
            _order(2, "LINK", "sell", "3", "12"),
            _order(3, "ETH", "buy", "0.1", "3000"),
        ],
    )
    assert [h.asset for h in state.open_holdings()] == ["ETH"]


def test_total_usdt_is_truncated_to_eight_decimals():
    amount, total = resolve_order_size(Decimal("3"), total_usdt=Decimal("10"))
    assert amount == Decimal("3.33333333")
    assert total == Decimal("9.99999999")


def test_total_usdt_scenario_amount():
    amount, total = resolve_order_size(Decimal("50000"), total_usdt=Decimal("500"))
    assert amount == Decimal("0.01")
    assert total == Decimal("500")


def test_amount_takes_precedence_over_total():
    amount, total = resolve_order_size(Decimal("2"), amount=Decimal("5"), total_usdt=Decimal("1"))
    assert amount == Decimal("5")
    assert total == Decimal("10")


@pytest.mark.parametrize(
    "price, amount, total",
    [
        (Decimal("0"), Decimal("1"), None),
        (Decimal("10"), Decimal("-1"), None),
        (Decimal("10"), None, None),
        (Decimal("10"), None, Decimal("0")),
        (Decimal("100000"), None, Decimal("0.0000001")),
    ],
)
def test_resolve_order_size_rejects_bad_input(price, amount, total):
    with pytest.raises(LedgerValidationError):
        resolve_order_size(price, amount=amount, total_usdt=total)


def test_amount_at_eight_decimals_is_kept_exactly():
    amount, total = resolve_order_size(Decimal("50000"), amount=Decimal("0.00000001"))
    assert amount == Decimal("0.00000001")
    assert total == Decimal("0.00050000")


@pytest.mark.parametrize("amount", ["0.000000001", "0.123456789", "1E+20"])
def test_amount_the_ledger_cannot_store_is_rejected(amount):
    with pytest.raises(LedgerValidationError):
        resolve_order_size(Decimal("50000"), amount=Decimal(amount))


def test_prices_are_rounded_to_ledger_precision():
    assert quantize_price(Decimal("97123.123456789")) == Decimal("97123.12345679")
    with pytest.raises(LedgerValidationError):
        quantize_price(Decimal("0.000000001"))
    with pytest.raises(LedgerValidationError):
        quantize_price(Decimal("NaN"))


def test_zero_amount_order_is_refused_by_the_fold():
    with pytest.raises(LedgerValidationError):
        fold_orders([_order(1, "BTC", "buy", "0", "50000")])


def _capital(entry_id: int, kind: str, amount: str, minutes: int) -> CapitalInput:
    return CapitalInput(id=entry_id, type=kind, amount=Decimal(amount), created_at=T0 + timedelta(minutes=minutes))


def test_replay_accepts_a_funded_history():
    state = replay_ledgers(
        [_capital(1, "initial", "1000", 0), _capital(2, "withdraw", "500", 30)],
        [_order(1, "BTC", "buy", "10", "100", minutes=10), _order(2, "BTC", "sell", "10", "200", minutes=20)],
    )
    assert state.cash.available_usdt == Decimal("1500")
    assert state.holdings["BTC"].amount == 0


def test_replay_refuses_a_buy_made_before_its_funding():
    # The 1000 deposit arrives only after the buy it would have to pay for.
    with pytest.raises(InsufficientFundsError) as excinfo:
        replay_ledgers(
            [_capital(1, "dca", "1000", 30)],
            [_order(1, "BTC", "buy", "10", "100", minutes=10), _order(2, "BTC", "sell", "10", "200", minutes=20)],
        )
    assert excinfo.value.required == Decimal("1000")
    assert excinfo.value.available == 0


def test_replay_refuses_a_withdrawal_the_cash_never_covered():
    with pytest.raises(InsufficientFundsError):
        replay_ledgers(
            [_capital(1, "initial", "100", 0), _capital(2, "withdraw", "150", 5), _capital(3, "dca", "100", 10)],
            [],
        )


def test_replay_checks_sells_like_the_order_fold():
    with pytest.raises(InsufficientPositionError):
        replay_ledgers(
            [_capital(1, "initial", "1000", 0)],
            [_order(1, "ETH", "sell", "1", "100", minutes=5)],
        )
