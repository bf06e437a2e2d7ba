"""Capital ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import CapitalEntry
from ...schemas import CapitalCreateRequest, CapitalEntrySchema, CapitalMovementRequest, MessageSchema
from ...services import capital as capital_service
from ...services.errors import PortfolioError
from ..dependencies import InternalAuth, get_db_session, http_error

router = APIRouter(dependencies=[InternalAuth], tags=["capital"])


def _serialize_entry(entry: CapitalEntry) -> CapitalEntrySchema:
    return CapitalEntrySchema(
        id=entry.id,
        amount=entry.amount,
        type=entry.type,
        description=entry.description,
        created_at=entry.created_at,
    )


@router.get("/capitals", response_model=list[CapitalEntrySchema])
async def get_capitals(session: AsyncSession = Depends(get_db_session)) -> list[CapitalEntrySchema]:
    entries = await capital_service.list_capital_entries(session)
    return [_serialize_entry(entry) for entry in entries]


@router.post("/capitals", response_model=CapitalEntrySchema, status_code=status.HTTP_201_CREATED)
async def post_capital(
    payload: CapitalCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> CapitalEntrySchema:
    try:
        entry = await capital_service.record_capital(
            session, payload.amount, payload.type, payload.description
        )
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return _serialize_entry(entry)


@router.delete("/capitals/{entry_id}", response_model=MessageSchema)
async def delete_capital(
    entry_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> MessageSchema:
    try:
        await capital_service.delete_capital(session, entry_id)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return MessageSchema(message=f"Capital entry {entry_id} deleted")


@router.post("/withdraw", response_model=CapitalEntrySchema, status_code=status.HTTP_201_CREATED)
async def post_withdraw(
    payload: CapitalMovementRequest,
    session: AsyncSession = Depends(get_db_session),
) -> CapitalEntrySchema:
    try:
        entry = await capital_service.withdraw(session, payload.amount, payload.description)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return _serialize_entry(entry)


@router.post("/realized-loss", response_model=CapitalEntrySchema, status_code=status.HTTP_201_CREATED)
async def post_realized_loss(
    payload: CapitalMovementRequest,
    session: AsyncSession = Depends(get_db_session),
) -> CapitalEntrySchema:
    try:
        entry = await capital_service.record_realized_loss(session, payload.amount, payload.description)
    except PortfolioError as exc:
        raise http_error(exc) from exc
    return _serialize_entry(entry)
