"""Capital ledger: deposits, withdrawals and realized losses."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import telemetry
from ..models import CAPITAL_TYPES, CapitalEntry
from .errors import (
    ConflictError,
    InsufficientFundsError,
    InsufficientPositionError,
    LedgerValidationError,
    NotFoundError,
    ProtectedEntryError,
)
from .holdings import check_ledger_amount
from .portfolio import ensure_portfolio, ledger_transaction, load_state

logger = logging.getLogger(__name__)

PROTECTED_TYPES = frozenset({"withdraw", "realized_loss"})


async def list_capital_entries(session: AsyncSession) -> list[CapitalEntry]:
    portfolio = await ensure_portfolio(session)
    result = await session.execute(
        select(CapitalEntry)
        .where(CapitalEntry.portfolio_id == portfolio.id)
        .order_by(CapitalEntry.created_at.desc(), CapitalEntry.id.desc())
    )
    return list(result.scalars().all())


async def record_capital(
    session: AsyncSession,
    amount: Decimal,
    entry_type: str,
    description: str | None = None,
) -> CapitalEntry:
    """Append a capital entry after checking it against the current ledgers."""

    if entry_type not in CAPITAL_TYPES:
        raise LedgerValidationError(f"capital type must be one of {', '.join(CAPITAL_TYPES)}")
    check_ledger_amount(amount)
    description = description.strip() if description else None

    async with ledger_transaction(session, "record_capital") as portfolio:
        if entry_type == "withdraw":
            state = await load_state(session, portfolio.id)
            available = state.cash.available_usdt
            if amount > available:
                logger.info("Rejected withdraw of %s with %s available", amount, available)
                raise InsufficientFundsError(
                    f"Insufficient USDT balance: requested {amount}, available {available}",
                    required=amount,
                    available=available,
                )
        entry = CapitalEntry(
            portfolio_id=portfolio.id,
            amount=amount,
            type=entry_type,
            description=description or None,
        )
        session.add(entry)
        await session.flush()
        await session.refresh(entry)
        logger.info("Recorded %s capital entry %s for %s", entry_type, entry.id, amount)
        telemetry.portfolio_metrics.ledger_write("capital", "append", entry_type)
    return entry


async def withdraw(session: AsyncSession, amount: Decimal, description: str | None = None) -> CapitalEntry:
    return await record_capital(session, amount, "withdraw", description)


async def record_realized_loss(
    session: AsyncSession, amount: Decimal, description: str | None = None
) -> CapitalEntry:
    return await record_capital(session, amount, "realized_loss", description)


async def delete_capital(session: AsyncSession, entry_id: int) -> None:
    """Remove a deposit entry as if it had never been recorded.

    The remaining ledgers are replayed in time order, so a deposit that
    funded a later withdrawal or buy cannot be removed.
    """

    async with ledger_transaction(session, "delete_capital") as portfolio:
        entry = await session.get(CapitalEntry, entry_id)
        if entry is None or entry.portfolio_id != portfolio.id:
            raise NotFoundError(f"Capital entry {entry_id} not found")
        if entry.type in PROTECTED_TYPES:
            logger.info("Refused to delete protected %s entry %s", entry.type, entry_id)
            raise ProtectedEntryError(f"{entry.type} entries cannot be deleted")
        try:
            await load_state(session, portfolio.id, exclude_capital_id=entry_id, replay=True)
        except (InsufficientFundsError, InsufficientPositionError) as exc:
            logger.info("Refused to delete capital entry %s: %s", entry_id, exc.message)
            raise ConflictError(
                f"Deleting capital entry {entry_id} would leave an earlier outflow unfunded: {exc.message}"
            ) from exc
        await session.delete(entry)
        logger.info("Deleted %s capital entry %s", entry.type, entry_id)
        telemetry.portfolio_metrics.ledger_write("capital", "delete", entry.type)


__all__ = [
    "PROTECTED_TYPES",
    "delete_capital",
    "list_capital_entries",
    "record_capital",
    "record_realized_loss",
    "withdraw",
]
