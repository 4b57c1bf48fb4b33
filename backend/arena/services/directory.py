from __future__ import annotations
from typing import Protocol
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.errors import NotFound
from arena.models.account import Account
from arena.services.uow import run_in_transaction

log = structlog.get_logger()


class AccountDirectory(Protocol):
    async def resolve(self, user_key: str) -> UUID: ...


async def find_by_user_key(session: AsyncSession, user_key: str) -> Account | None:
    return await session.scalar(select(Account).where(Account.user_key == user_key))


async def register_account(session: AsyncSession, user_key: str, display_name: str | None = None) -> Account:
    """Create the account for an external identity; returns the existing one if already registered."""
    existing = await find_by_user_key(session, user_key)
    if existing:
        return existing
    acct = Account(user_key=user_key, display_name=(display_name or user_key)[:64], gp_balance=0)
    session.add(acct)
    await session.flush()
    log.info("account_registered", account_id=str(acct.id), user_key=user_key)
    return acct


class DbAccountDirectory:
    """Account directory backed by the accounts table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def resolve(self, user_key: str) -> UUID:
        async with self.session_factory() as session:
            acct = await find_by_user_key(session, user_key)
        if not acct:
            raise NotFound(f"no account registered for {user_key!r}")
        return acct.id

    async def register(self, user_key: str, display_name: str | None = None) -> Account:
        return await run_in_transaction(self.session_factory, register_account, user_key, display_name)
