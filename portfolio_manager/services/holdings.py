"""Pure folds of the capital and order ledgers.

Nothing here touches the database. The ledger services load rows, convert
them into the dataclasses below and let these functions derive positions and
cash. Holdings are never stored, so every read goes through ``fold_orders``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, getcontext
from typing import Iterable

from .errors import InsufficientFundsError, InsufficientPositionError, LedgerValidationError

getcontext().prec = 28

ZERO = Decimal("0")
QUANTUM = Decimal("0.00000001")
# Numeric(28, 8) columns hold at most 20 integer digits.
LEDGER_LIMIT = Decimal("1e20")

DEPOSIT_TYPES = frozenset({"initial", "dca"})


@dataclass(frozen=True)
class CapitalInput:
    """Normalized capital ledger row."""

    id: int
    type: str
    amount: Decimal
    created_at: datetime | None = None


@dataclass(frozen=True)
class OrderInput:
    """Normalized order ledger row."""

    id: int
    asset: str
    type: str
    amount: Decimal
    price: Decimal
    total_usdt: Decimal
    created_at: datetime


@dataclass
class Holding:
    asset: str
    amount: Decimal = ZERO
    average_price: Decimal = ZERO
    total_cost: Decimal = ZERO


@dataclass
class CashSummary:
    total_deposits: Decimal = ZERO
    total_withdrawals: Decimal = ZERO
    realized_loss: Decimal = ZERO
    total_bought: Decimal = ZERO
    total_sold: Decimal = ZERO

    @property
    def available_usdt(self) -> Decimal:
        return self.total_deposits - self.total_withdrawals - self.total_bought + self.total_sold

    @property
    def total_capital(self) -> Decimal:
        return self.total_deposits - self.total_withdrawals + self.realized_loss


@dataclass
class LedgerState:
    """Point-in-time result of folding both ledgers."""

    holdings: dict[str, Holding] = field(default_factory=dict)
    cash: CashSummary = field(default_factory=CashSummary)

    def open_holdings(self) -> list[Holding]:
        return [h for h in sorted(self.holdings.values(), key=lambda h: h.asset) if h.amount > 0]


def normalize_asset(asset: str) -> str:
    symbol = (asset or "").strip().upper()
    if not symbol:
        raise LedgerValidationError("asset symbol is required")
    return symbol


def order_sort_key(order: OrderInput) -> tuple[datetime, int]:
    return (order.created_at, order.id)


def apply_order(holding: Holding, order: OrderInput) -> Holding:
    """Apply one order to ``holding`` in place using weighted-average cost."""

    if order.amount <= 0:
        raise LedgerValidationError(f"order {order.id} has a non-positive amount {order.amount}")
    if order.type == "buy":
        holding.total_cost += order.amount * order.price
        holding.amount += order.amount
        holding.average_price = holding.total_cost / holding.amount
    elif order.type == "sell":
        if order.amount > holding.amount:
            raise InsufficientPositionError(
                f"cannot sell {order.amount} {holding.asset}: only {holding.amount} held",
                asset=holding.asset,
                required=order.amount,
                available=holding.amount,
            )
        holding.total_cost -= order.amount * holding.average_price
        holding.amount -= order.amount
    else:
        raise LedgerValidationError(f"unknown order type {order.type!r}")

    if holding.amount == 0:
        holding.average_price = ZERO
        holding.total_cost = ZERO
    return holding


def fold_orders(orders: Iterable[OrderInput]) -> dict[str, Holding]:
    """Fold orders per asset in ``(created_at, id)`` order.

    Raises ``InsufficientPositionError`` when a sell is not covered by the
    position accumulated before it.
    """

    holdings: dict[str, Holding] = {}
    for order in sorted(orders, key=order_sort_key):
        holding = holdings.setdefault(order.asset, Holding(asset=order.asset))
        apply_order(holding, order)
    return holdings


def summarize_cash(
    capital_entries: Iterable[CapitalInput], orders: Iterable[OrderInput]
) -> CashSummary:
    summary = CashSummary()
    for entry in capital_entries:
        if entry.type in DEPOSIT_TYPES:
            summary.total_deposits += entry.amount
        elif entry.type == "withdraw":
            summary.total_withdrawals += entry.amount
        elif entry.type == "realized_loss":
            summary.realized_loss += entry.amount
        else:
            raise LedgerValidationError(f"unknown capital type {entry.type!r}")
    for order in orders:
        if order.type == "buy":
            summary.total_bought += order.total_usdt
        else:
            summary.total_sold += order.total_usdt
    return summary


def fold_ledgers(
    capital_entries: Iterable[CapitalInput], orders: Iterable[OrderInput]
) -> LedgerState:
    orders = list(orders)
    return LedgerState(holdings=fold_orders(orders), cash=summarize_cash(capital_entries, orders))


def _event_key(created_at: datetime | None, kind: int, row_id: int) -> tuple:
    # Rows without a timestamp sort first; on equal timestamps capital precedes orders.
    return (created_at is not None, created_at, kind, row_id)


def replay_ledgers(
    capital_entries: Iterable[CapitalInput], orders: Iterable[OrderInput]
) -> LedgerState:
    """Fold both ledgers in time order, checking cash after every outflow.

    Raises ``InsufficientFundsError`` at the first withdrawal or buy that the
    cash accumulated before it does not cover, and ``InsufficientPositionError``
    at the first uncovered sell.
    """

    entries = list(capital_entries)
    orders = list(orders)
    events: list[tuple[tuple, CapitalInput | OrderInput]] = [
        (_event_key(e.created_at, 0, e.id), e) for e in entries
    ]
    events.extend((_event_key(o.created_at, 1, o.id), o) for o in orders)
    events.sort(key=lambda event: event[0])

    holdings: dict[str, Holding] = {}
    cash = ZERO
    for _, row in events:
        if isinstance(row, OrderInput):
            apply_order(holdings.setdefault(row.asset, Holding(asset=row.asset)), row)
            outflow = row.total_usdt if row.type == "buy" else -row.total_usdt
        elif row.type in DEPOSIT_TYPES:
            outflow = -row.amount
        elif row.type == "withdraw":
            outflow = row.amount
        else:
            continue
        if outflow > 0 and outflow > cash:
            raise InsufficientFundsError(
                f"{row.type} {row.id} needs {outflow} USDT but only {cash} was available",
                required=outflow,
                available=cash,
            )
        cash -= outflow
    return LedgerState(holdings=holdings, cash=summarize_cash(entries, orders))


def _to_ledger(value: Decimal, rounding: str, label: str) -> Decimal:
    if value >= LEDGER_LIMIT:
        raise LedgerValidationError(f"{label} exceeds the ledger's 20 integer digits")
    return value.quantize(QUANTUM, rounding=rounding)


def check_ledger_amount(amount: Decimal | None, label: str = "amount") -> Decimal:
    """Validate a positive quantity that the ledger can store without rounding."""

    if amount is None or not amount.is_finite() or amount <= 0:
        raise LedgerValidationError(f"{label} must be greater than zero")
    if amount != _to_ledger(amount, ROUND_DOWN, label):
        raise LedgerValidationError(f"{label} supports at most 8 decimal places")
    return amount


def quantize_price(price: Decimal | None) -> Decimal:
    """Round a price to the eight decimals the ledger columns store."""

    if price is None or not price.is_finite():
        raise LedgerValidationError("price must be greater than zero")
    rounded = _to_ledger(price, ROUND_HALF_UP, "price")
    if rounded <= 0:
        raise LedgerValidationError("price must be greater than zero")
    return rounded


def resolve_order_size(
    price: Decimal,
    *,
    amount: Decimal | None = None,
    total_usdt: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """Return ``(amount, total_usdt)`` for an order priced at ``price``.

    ``amount`` wins when both are supplied and may carry at most eight
    decimals. A ``total_usdt`` order buys the quantity truncated to eight
    decimals, and the notional is then recomputed from that quantity.
    ``price`` is expected at ledger precision (see ``quantize_price``).
    """

    if price is None or not price.is_finite() or price <= 0:
        raise LedgerValidationError("price must be greater than zero")
    if amount is not None:
        check_ledger_amount(amount)
        return amount, _to_ledger(amount * price, ROUND_HALF_UP, "total_usdt")
    if total_usdt is None:
        raise LedgerValidationError("either amount or total_usdt is required")
    if not total_usdt.is_finite() or total_usdt <= 0:
        raise LedgerValidationError("total_usdt must be greater than zero")
    quantity = _to_ledger(total_usdt / price, ROUND_DOWN, "amount")
    if quantity <= 0:
        raise LedgerValidationError("total_usdt is too small to buy any quantity at this price")
    return quantity, _to_ledger(quantity * price, ROUND_HALF_UP, "total_usdt")


__all__ = [
    "CapitalInput",
    "CashSummary",
    "Holding",
    "LedgerState",
    "OrderInput",
    "apply_order",
    "check_ledger_amount",
    "fold_ledgers",
    "fold_orders",
    "normalize_asset",
    "quantize_price",
    "replay_ledgers",
    "resolve_order_size",
    "summarize_cash",
]
