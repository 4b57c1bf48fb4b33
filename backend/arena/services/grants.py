from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.config import settings
from arena.db import utcnow
from arena.errors import ConcurrencyConflict, InvalidAmount
from arena.models.account import Account
from arena.models.ledger import GRANT
from arena.services import ledger
from arena.services.uow import run_in_transaction

log = structlog.get_logger()

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def current_period(now: datetime | None = None) -> str:
    """Monthly period key in UTC, e.g. "2025-03"."""
    now = now or utcnow()
    return f"{now.year:04d}-{now.month:02d}"


def validate_period(period: str) -> str:
    if not PERIOD_RE.match(period or ""):
        raise InvalidAmount(f"period must look like YYYY-MM, got {period!r}")
    return period


@dataclass
class GrantSummary:
    period: str
    amount: int
    granted: list[UUID] = field(default_factory=list)
    skipped: int = 0
    failed: list[UUID] = field(default_factory=list)


async def grant_account(session: AsyncSession, account_id: UUID, period: str, amount: int) -> bool:
    """
    Credit the stipend and stamp the period in one versioned write.
    Returns False if nothing was credited: the period was already granted, or an
    earlier period is being replayed. The marker never moves backwards.
    """
    acct = await ledger.get_account(session, account_id)
    if acct.last_grant_period is not None and acct.last_grant_period >= period:
        return False
    key = f"grant:{period}:{account_id}"
    if await ledger.find_by_key(session, key):
        acct.last_grant_period = period
        await session.flush()
        return False
    acct.last_grant_period = period
    await ledger.credit(
        session, account_id, amount, GRANT, None,
        idempotency_key=key,
        note=f"periodic grant {period}",
    )
    await session.flush()
    return True


async def run_grant(
    session_factory: async_sessionmaker[AsyncSession],
    period: str | None = None,
    *,
    amount: int | None = None,
) -> GrantSummary:
    """
    Grant every account that has not yet been granted for ``period``. Safe to run repeatedly
    or concurrently: the marker check and the credit commit together per account, and the
    ledger's idempotency key backs it up.
    """
    period = validate_period(period or current_period())
    amount = settings.grant_amount if amount is None else amount
    if amount <= 0:
        raise InvalidAmount("grant amount must be > 0")

    async with session_factory() as session:
        candidates = list((await session.execute(
            select(Account.id).where(
                (Account.last_grant_period.is_(None)) | (Account.last_grant_period != period)
            ).order_by(Account.created_at.asc(), Account.id)
        )).scalars().all())

    summary = GrantSummary(period=period, amount=amount)
    log.info("grant_started", period=period, candidates=len(candidates), amount=amount)
    for account_id in candidates:
        try:
            granted = await run_in_transaction(session_factory, grant_account, account_id, period, amount)
        except ConcurrencyConflict:
            log.error("grant_failed", period=period, account_id=str(account_id))
            summary.failed.append(account_id)
            continue
        if granted:
            summary.granted.append(account_id)
        else:
            summary.skipped += 1
    log.info("grant_completed", period=period, granted=len(summary.granted),
             skipped=summary.skipped, failed=len(summary.failed))
    return summary
