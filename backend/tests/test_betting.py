import uuid
from dataclasses import dataclass
from datetime import timedelta

import pytest

from arena.errors import InvalidState, InvalidAmount, SelfBet, DuplicateBet, NotFound, InsufficientFunds
from arena.models.ledger import GRANT
from arena.services import betting, competitions, ledger
from arena.services.directory import register_account
from arena.services.betting import compute_payouts, implied_odds
from arena.services.uow import run_in_transaction


@dataclass
class FakeBet:
    id: uuid.UUID
    bettor_account_id: uuid.UUID
    target_participant_id: uuid.UUID
    amount: int


P1, P2 = uuid.UUID(int=101), uuid.UUID(int=102)


def _bet(n, target, amount):
    return FakeBet(uuid.UUID(int=n), uuid.UUID(int=1000 + n), target, amount)


def test_proportional_split_matches_worked_example():
    c, d = _bet(1, P1, 50), _bet(2, P2, 30)
    res = compute_payouts([c, d], [P1])
    assert res.mode == betting.PROPORTIONAL
    by_bet = {p.bet_id: p for p in res.payouts}
    assert by_bet[c.id].payout == 80
    assert by_bet[d.id].payout == 0
    assert res.house_contribution == 0
    assert res.house_retained == 0


def test_unopposed_winners_get_house_guarantee():
    a, b = _bet(1, P1, 50), _bet(2, P1, 7)
    res = compute_payouts([a, b], [P1], house_guarantee_pct=50)
    assert res.mode == betting.HOUSE_GUARANTEE
    by_bet = {p.bet_id: p for p in res.payouts}
    assert by_bet[a.id].payout == 75
    assert by_bet[b.id].payout == 10  # 7 + floor(3.5)
    assert res.house_contribution == 28


def test_no_winning_bets_pays_nobody():
    res = compute_payouts([_bet(1, P2, 40)], [P1])
    assert res.mode == betting.NO_WINNING_BETS
    assert res.distributed == 0
    assert res.house_retained == 40


def test_no_bets():
    res = compute_payouts([], [P1])
    assert res.mode == betting.NO_BETS
    assert res.payouts == []


def test_flooring_remainder_policy():
    bets = [_bet(1, P1, 1), _bet(2, P1, 1), _bet(3, P1, 1), _bet(4, P2, 2)]
    kept = compute_payouts(bets, [P1], remainder_to_house=True)
    assert [p.payout for p in kept.payouts if p.payout] == [1, 1, 1]
    assert kept.house_retained == 2

    spread = compute_payouts(bets, [P1], remainder_to_house=False)
    assert sorted(p.payout for p in spread.payouts if p.payout) == [1, 2, 2]
    assert spread.house_retained == 0
    # equal stakes: the remainder goes by bet id
    assert {p.bet_id: p.payout for p in spread.payouts}[uuid.UUID(int=3)] == 1


def test_payouts_are_deterministic_regardless_of_input_order():
    bets = [_bet(1, P1, 13), _bet(2, P1, 29), _bet(3, P2, 17), _bet(4, P2, 5)]
    one = compute_payouts(bets, [P1])
    two = compute_payouts(list(reversed(bets)), [P1])
    assert one == two


def test_bets_on_different_winners_only_get_stakes_back():
    res = compute_payouts([_bet(1, P1, 20), _bet(2, P2, 20)], [P1, P2], house_guarantee_pct=50)
    assert [p.payout for p in res.payouts] == [20, 20]
    assert res.house_contribution == 0
    assert res.house_retained == 0


def test_unopposed_guarantee_still_applies_to_a_single_winner_of_many():
    res = compute_payouts([_bet(1, P1, 20), _bet(2, P1, 10)], [P1, P2], house_guarantee_pct=50)
    assert res.mode == betting.HOUSE_GUARANTEE
    assert [p.payout for p in res.payouts] == [30, 15]


def test_implied_odds():
    bets = [_bet(1, P1, 50), _bet(2, P2, 30)]
    assert implied_odds(bets, P1).ratio == 0.6
    assert implied_odds(bets, uuid.UUID(int=9)).ratio is None
    assert implied_odds([_bet(1, P1, 5)], P1).house_guaranteed


async def _active(session_factory, make_account):
    a = await make_account("alice", 500)
    b = await make_account("bob", 500)
    comp = await run_in_transaction(session_factory, competitions.create_competition, a, b, 100, "lb-1")
    comp = await run_in_transaction(session_factory, competitions.respond, comp.id, b, True)
    async with session_factory() as session:
        parts = {p.account_id: p.id for p in await competitions.list_participants(session, comp.id)}
    return comp, a, b, parts


@pytest.mark.asyncio
async def test_place_bet_escrows_stake(session_factory, make_account, balance_of):
    comp, a, b, parts = await _active(session_factory, make_account)
    c = await make_account("carol", 100)
    bet = await run_in_transaction(session_factory, betting.place_bet, comp.id, c, parts[a], 50)
    assert bet.amount == 50
    assert await balance_of(c) == 50
    async with session_factory() as session:
        reloaded = await competitions.get_competition(session, comp.id)
        assert reloaded.total_pool == 50
        assert reloaded.status == "active"
        summary = betting.betting_summary(reloaded, await betting.list_bets(session, comp.id))
    assert summary["total_bets"] == 1
    assert summary["by_target"] == {str(parts[a]): 50}
    assert summary["betting_open"]


@pytest.mark.asyncio
async def test_place_bet_rejections(session_factory, make_account, balance_of):
    comp, a, b, parts = await _active(session_factory, make_account)
    c = await make_account("carol", 100)
    poor = await make_account("poor", 3)

    with pytest.raises(InvalidAmount):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, c, parts[a], 101)
    with pytest.raises(InvalidAmount):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, c, parts[a], 0)
    with pytest.raises(SelfBet):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, a, parts[b], 10)
    with pytest.raises(NotFound):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, c, uuid.uuid4(), 10)
    with pytest.raises(NotFound):
        await run_in_transaction(session_factory, betting.place_bet, uuid.uuid4(), c, parts[a], 10)
    with pytest.raises(InsufficientFunds):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, poor, parts[a], 10)
    assert await balance_of(poor) == 3

    await run_in_transaction(session_factory, betting.place_bet, comp.id, c, parts[a], 10)
    with pytest.raises(DuplicateBet):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, c, parts[b], 10)
    assert await balance_of(c) == 90
    async with session_factory() as session:
        assert len(await betting.list_bets(session, comp.id)) == 1


@pytest.mark.asyncio
async def test_betting_window_closes(session_factory, make_account):
    comp, a, b, parts = await _active(session_factory, make_account)
    c = await make_account("carol", 100)
    late = comp.starts_at + timedelta(hours=73)
    with pytest.raises(InvalidState):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, c, parts[a], 10, now=late)


@pytest.mark.asyncio
async def test_bets_only_on_active_competitions(session_factory, make_account):
    a = await make_account("alice", 500)
    b = await make_account("bob", 500)
    c = await make_account("carol", 100)
    comp = await run_in_transaction(session_factory, competitions.create_competition, a, b, 100, "lb-1")
    async with session_factory() as session:
        pid = (await competitions.list_participants(session, comp.id))[0].id
    with pytest.raises(InvalidState):
        await run_in_transaction(session_factory, betting.place_bet, comp.id, c, pid, 10)


async def _seed(factory, name, gp):
    async def _op(session):
        acct = await register_account(session, f"key-{name}", name)
        await ledger.credit(session, acct.id, gp, GRANT, None, note="seed")
        return acct
    return (await run_in_transaction(factory, _op)).id


@pytest.mark.asyncio
async def test_unknown_bettor_is_not_found_with_foreign_keys_enforced(fk_session_factory):
    f = fk_session_factory
    a = await _seed(f, "alice", 500)
    b = await _seed(f, "bob", 500)
    comp = await run_in_transaction(f, competitions.create_competition, a, b, 100, "lb-1")
    await run_in_transaction(f, competitions.respond, comp.id, b, True)
    async with f() as session:
        parts = {p.account_id: p.id for p in await competitions.list_participants(session, comp.id)}

    with pytest.raises(NotFound):
        await run_in_transaction(f, betting.place_bet, comp.id, uuid.uuid4(), parts[a], 10)
    async with f() as session:
        assert await betting.list_bets(session, comp.id) == []

    c = await _seed(f, "carol", 100)
    bet = await run_in_transaction(f, betting.place_bet, comp.id, c, parts[a], 10)
    assert bet.amount == 10
