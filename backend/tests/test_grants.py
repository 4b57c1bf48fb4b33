from datetime import datetime, timezone

import pytest

from arena.errors import InvalidAmount
from arena.models.ledger import GRANT
from arena.services import grants, ledger
from arena.services.uow import run_in_transaction


def test_current_period_is_utc_month():
    assert grants.current_period(datetime(2025, 3, 31, 23, 59, tzinfo=timezone.utc)) == "2025-03"


def test_validate_period():
    assert grants.validate_period("2025-12") == "2025-12"
    for bad in ("2025-13", "2025-3", "25-03", ""):
        with pytest.raises(InvalidAmount):
            grants.validate_period(bad)


@pytest.mark.asyncio
async def test_grant_runs_once_per_period(session_factory, make_account, balance_of):
    a = await make_account("alice")
    b = await make_account("bob", 20)

    first = await grants.run_grant(session_factory, "2025-03")
    second = await grants.run_grant(session_factory, "2025-03")

    assert sorted(map(str, first.granted)) == sorted(map(str, [a, b]))
    assert second.granted == []
    assert await balance_of(a) == 1000
    assert await balance_of(b) == 1020

    async with session_factory() as session:
        rows = [e for e in await ledger.entries(session, a) if e.reason == GRANT]
        assert len(rows) == 1
        acct = await ledger.get_account(session, a)
        assert acct.last_grant_period == "2025-03"


@pytest.mark.asyncio
async def test_grant_account_reports_repeat(session_factory, make_account, balance_of):
    a = await make_account("alice")
    assert await run_in_transaction(session_factory, grants.grant_account, a, "2025-03", 1000)
    assert not await run_in_transaction(session_factory, grants.grant_account, a, "2025-03", 1000)
    assert await balance_of(a) == 1000


@pytest.mark.asyncio
async def test_new_period_and_late_registrations(session_factory, make_account, balance_of):
    a = await make_account("alice")
    await grants.run_grant(session_factory, "2025-03")
    late = await make_account("late")
    mid = await grants.run_grant(session_factory, "2025-03")
    assert mid.granted == [late]

    april = await grants.run_grant(session_factory, "2025-04", amount=250)
    assert len(april.granted) == 2
    assert await balance_of(a) == 1250
    assert await balance_of(late) == 1250


@pytest.mark.asyncio
async def test_grant_amount_must_be_positive(session_factory):
    with pytest.raises(InvalidAmount):
        await grants.run_grant(session_factory, "2025-03", amount=0)


@pytest.mark.asyncio
async def test_replaying_an_earlier_period_pays_nothing(session_factory, make_account, balance_of):
    a = await make_account("alice")
    await grants.run_grant(session_factory, "2025-04")

    replay = await grants.run_grant(session_factory, "2025-03")
    assert replay.granted == []
    assert replay.skipped == 1
    assert not await run_in_transaction(session_factory, grants.grant_account, a, "2025-03", 1000)
    assert await balance_of(a) == 1000
    async with session_factory() as session:
        assert (await ledger.get_account(session, a)).last_grant_period == "2025-04"
