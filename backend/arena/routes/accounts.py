from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from arena.config import settings
from arena.db import get_session, get_session_factory
from arena.errors import NotFound
from arena.models.account import Account
from arena.schemas.account import (
    AccountCreate, AccountPublic, LedgerSnapshot, LedgerEntryPublic, BalanceRow, AdjustRequest,
)
from arena.services import ledger
from arena.services.directory import register_account, find_by_user_key
from arena.services.uow import run_in_transaction

router = APIRouter(tags=["accounts"])

def _public(acct: Account) -> AccountPublic:
    return AccountPublic(
        id=acct.id, user_key=acct.user_key, display_name=acct.display_name,
        gp_balance=int(acct.gp_balance), last_grant_period=acct.last_grant_period, created_at=acct.created_at,
    )

@router.post("/accounts", response_model=AccountPublic, status_code=201)
async def create_account(payload: AccountCreate, factory=Depends(get_session_factory)):
    acct = await run_in_transaction(factory, register_account, payload.user_key, payload.display_name)
    return _public(acct)

@router.get("/accounts/by-key/{user_key}", response_model=AccountPublic)
async def get_account_by_key(user_key: str, session: AsyncSession = Depends(get_session)):
    acct = await find_by_user_key(session, user_key)
    if not acct:
        raise NotFound(f"no account registered for {user_key!r}")
    return _public(acct)

@router.get("/accounts/{account_id}", response_model=AccountPublic)
async def get_account(account_id: UUID, session: AsyncSession = Depends(get_session)):
    return _public(await ledger.get_account(session, account_id))

@router.get("/accounts/{account_id}/ledger", response_model=LedgerSnapshot)
async def get_ledger(
    account_id: UUID,
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    bal = await ledger.balance(session, account_id)
    rows = await ledger.entries(session, account_id, limit=limit)
    return LedgerSnapshot(
        account_id=account_id,
        balance=bal,
        entries=[
            LedgerEntryPublic(
                id=e.id, account_id=e.account_id, reason=e.reason, amount=int(e.amount),
                balance_after=int(e.balance_after), ref_id=e.ref_id, note=e.note, created_at=e.created_at,
            ) for e in rows
        ],
    )

@router.post("/accounts/{account_id}/adjust", response_model=AccountPublic)
async def adjust_balance(account_id: UUID, payload: AdjustRequest, factory=Depends(get_session_factory)):
    """Administrative correction, recorded as an ADJUST entry."""
    await run_in_transaction(factory, ledger.adjust, account_id, payload.amount, payload.note)
    async with factory() as session:
        return _public(await ledger.get_account(session, account_id))

@router.get("/leaderboard", response_model=list[BalanceRow])
async def balance_leaderboard(
    top: int | None = Query(default=None, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    rows = await ledger.top_balances(session, top or settings.leaderboard_default_top)
    return [
        BalanceRow(position=i, account_id=a.id, display_name=a.display_name, gp_balance=int(a.gp_balance))
        for i, a in enumerate(rows, start=1)
    ]
