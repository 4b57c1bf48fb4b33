from __future__ import annotations
from uuid import UUID
import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from arena.errors import InsufficientFunds, NotFound, InvalidAmount
from arena.models.account import Account
from arena.models.ledger import LedgerEntry, ADJUST

log = structlog.get_logger()


async def get_account(session: AsyncSession, account_id: UUID) -> Account:
    acct = await session.get(Account, account_id)
    if not acct:
        raise NotFound(f"account {account_id} not found")
    return acct


async def balance(session: AsyncSession, account_id: UUID) -> int:
    return int((await get_account(session, account_id)).gp_balance)


async def recompute_balance(session: AsyncSession, account_id: UUID) -> int:
    """Sum of the entry log; must always equal the cached balance."""
    total = await session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.account_id == account_id)
    )
    return int(total or 0)


async def entries(session: AsyncSession, account_id: UUID, limit: int = 50) -> list[LedgerEntry]:
    return list((await session.execute(
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
        .limit(limit)
    )).scalars().all())


async def entries_for_ref(session: AsyncSession, ref_id: UUID) -> list[LedgerEntry]:
    return list((await session.execute(
        select(LedgerEntry).where(LedgerEntry.ref_id == ref_id).order_by(LedgerEntry.created_at.asc())
    )).scalars().all())


async def top_balances(session: AsyncSession, n: int = 10) -> list[Account]:
    return list((await session.execute(
        select(Account).order_by(Account.gp_balance.desc(), Account.display_name.asc()).limit(n)
    )).scalars().all())


async def find_by_key(session: AsyncSession, idempotency_key: str | None) -> LedgerEntry | None:
    if not idempotency_key:
        return None
    return await session.scalar(select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key))


def _append(session: AsyncSession, acct: Account, amount: int, reason: str, ref: UUID | None,
            idempotency_key: str | None, note: str | None) -> LedgerEntry:
    # Cached balance and the entry move together; the account UPDATE carries the version check.
    acct.gp_balance = int(acct.gp_balance) + int(amount)
    entry = LedgerEntry(
        account_id=acct.id,
        reason=reason,
        amount=int(amount),
        balance_after=acct.gp_balance,
        ref_id=ref,
        idempotency_key=idempotency_key,
        note=note,
    )
    session.add(entry)
    return entry


async def credit(
    session: AsyncSession,
    account_id: UUID,
    amount: int,
    reason: str,
    ref: UUID | None = None,
    *,
    idempotency_key: str | None = None,
    note: str | None = None,
) -> LedgerEntry:
    """
    Credit GP to an account. Always succeeds for a known account.
    Idempotent by idempotency_key: a repeated key returns the original entry.
    """
    if amount <= 0:
        raise ValueError("amount must be > 0")

    exists = await find_by_key(session, idempotency_key)
    if exists:
        return exists

    acct = await get_account(session, account_id)
    entry = _append(session, acct, amount, reason, ref, idempotency_key, note)
    log.info("ledger_credit", account_id=str(account_id), amount=amount, reason=reason,
             ref=str(ref) if ref else None, balance=acct.gp_balance)
    return entry


async def debit(
    session: AsyncSession,
    account_id: UUID,
    amount: int,
    reason: str,
    ref: UUID | None = None,
    *,
    idempotency_key: str | None = None,
    note: str | None = None,
) -> LedgerEntry:
    """
    Debit GP from an account.
    Raises InsufficientFunds (and changes nothing) if the balance is too low.
    """
    if amount <= 0:
        raise ValueError("amount must be > 0")

    exists = await find_by_key(session, idempotency_key)
    if exists:
        return exists

    acct = await get_account(session, account_id)
    bal = int(acct.gp_balance)
    if bal < amount:
        raise InsufficientFunds(f"need {amount}, have {bal}")

    entry = _append(session, acct, -amount, reason, ref, idempotency_key, note)
    log.info("ledger_debit", account_id=str(account_id), amount=amount, reason=reason,
             ref=str(ref) if ref else None, balance=acct.gp_balance)
    return entry


async def adjust(session: AsyncSession, account_id: UUID, amount: int, note: str) -> LedgerEntry:
    """Admin correction as a new offsetting entry. Never drives a balance negative."""
    if amount == 0:
        raise InvalidAmount("adjustment must be non-zero")
    acct = await get_account(session, account_id)
    if int(acct.gp_balance) + amount < 0:
        raise InsufficientFunds(f"adjustment of {amount} would overdraw balance {acct.gp_balance}")
    entry = _append(session, acct, amount, ADJUST, None, None, note)
    log.info("ledger_adjust", account_id=str(account_id), amount=amount, balance=acct.gp_balance)
    return entry
