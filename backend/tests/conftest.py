import os

# The app module builds its engine at import time; keep it off Postgres in tests.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./arena_test.db")
os.environ.setdefault("ENVIRONMENT", "test")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from arena.db import Base, get_session, get_session_factory
import arena.models.account  # register tables
import arena.models.ledger
import arena.models.competition
from arena.main import app
from arena.models.ledger import GRANT
from arena.routes.system import get_queue
from arena.services import ledger
from arena.services.directory import register_account
from arena.services.leaderboard import StaticLeaderboardSnapshot, get_leaderboard_snapshot
from arena.services.uow import run_in_transaction


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def fk_session_factory(tmp_path):
    """Same schema with foreign keys enforced, as on Postgres."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'arena_fk.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def snapshot():
    return StaticLeaderboardSnapshot()


@pytest.fixture
def make_account(session_factory):
    async def _make(name: str, gp: int = 0):
        async def _op(session):
            acct = await register_account(session, f"key-{name}", name)
            if gp:
                await ledger.credit(session, acct.id, gp, GRANT, None, note="seed")
            return acct
        return (await run_in_transaction(session_factory, _op)).id
    return _make


@pytest.fixture
def balance_of(session_factory):
    async def _balance(account_id):
        async with session_factory() as session:
            return await ledger.balance(session, account_id)
    return _balance


class FakeJob:
    id = "job-1"


class FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))
        return FakeJob()


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest_asyncio.fixture
async def client(session_factory, snapshot, fake_queue):
    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_leaderboard_snapshot] = lambda: snapshot
    app.dependency_overrides[get_queue] = lambda: fake_queue
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
