from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Protocol
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.config import settings
from arena.db import utcnow, as_utc
from arena.errors import InvalidState, DuplicateBet, SelfBet, NotFound, InvalidAmount
from arena.models.competition import Competition, Participant, Bet, ACTIVE
from arena.models.ledger import BET_ESCROW, BET_PAYOUT, BET_REFUND
from arena.services import ledger

log = structlog.get_logger()

# Settlement modes
NO_BETS = "no_bets"
NO_WINNING_BETS = "no_winning_bets"
HOUSE_GUARANTEE = "house_guarantee"
PROPORTIONAL = "proportional"


class BetLike(Protocol):
    id: UUID
    bettor_account_id: UUID
    target_participant_id: UUID
    amount: int


@dataclass(frozen=True)
class BetPayout:
    bet_id: UUID
    bettor_account_id: UUID
    stake: int
    payout: int               # total credited to the bettor; 0 for a losing bet
    house_contribution: int   # part of payout funded by the house

    @property
    def profit(self) -> int:
        return self.payout - self.stake if self.payout else -self.stake


@dataclass(frozen=True)
class PoolSettlement:
    mode: str
    winning_stake: int
    losing_stake: int
    payouts: list[BetPayout] = field(default_factory=list)

    @property
    def house_contribution(self) -> int:
        return sum(p.house_contribution for p in self.payouts)

    @property
    def distributed(self) -> int:
        return sum(p.payout for p in self.payouts)

    @property
    def house_retained(self) -> int:
        """Stakes kept by the house: the whole losing side when nobody won, else the flooring remainder."""
        return self.winning_stake + self.losing_stake + self.house_contribution - self.distributed


def compute_payouts(
    bets: Iterable[BetLike],
    winning_participant_ids: Iterable[UUID],
    *,
    house_guarantee_pct: int | None = None,
    remainder_to_house: bool | None = None,
) -> PoolSettlement:
    """
    Pure pot split. Same bets and winners always give the same amounts.

      - no winning bets: nobody is paid, the losing stakes stay with the house
      - winners unopposed: stake back + floor(stake * pct / 100) from the house
      - otherwise: stake back + floor(stake * L / W) of the losing pool L
    """
    pct = settings.house_guarantee_pct if house_guarantee_pct is None else house_guarantee_pct
    to_house = settings.pot_remainder_to_house if remainder_to_house is None else remainder_to_house
    winners = set(winning_participant_ids)
    ordered = sorted(bets, key=lambda b: str(b.id))

    winning = [b for b in ordered if b.target_participant_id in winners]
    losing = [b for b in ordered if b.target_participant_id not in winners]
    W = sum(int(b.amount) for b in winning)
    L = sum(int(b.amount) for b in losing)

    if not ordered:
        return PoolSettlement(NO_BETS, 0, 0)

    losers = [BetPayout(b.id, b.bettor_account_id, int(b.amount), 0, 0) for b in losing]

    if not winning:
        return PoolSettlement(NO_WINNING_BETS, 0, L, losers)

    if L == 0 and len({b.target_participant_id for b in winning}) > 1:
        # bets on different winners opposed each other: stakes back, no bonus
        paid = [BetPayout(b.id, b.bettor_account_id, int(b.amount), int(b.amount), 0) for b in winning]
        return PoolSettlement(PROPORTIONAL, W, 0, paid + losers)

    if L == 0:
        paid = []
        for b in winning:
            bonus = (int(b.amount) * pct) // 100
            paid.append(BetPayout(b.id, b.bettor_account_id, int(b.amount), int(b.amount) + bonus, bonus))
        return PoolSettlement(HOUSE_GUARANTEE, W, 0, paid + losers)

    shares = {b.id: (int(b.amount) * L) // W for b in winning}
    remainder = L - sum(shares.values())
    if remainder and not to_house:
        # one GP at a time, biggest stake first, id as tiebreak
        for b in sorted(winning, key=lambda b: (-int(b.amount), str(b.id)))[:remainder]:
            shares[b.id] += 1
    paid = [BetPayout(b.id, b.bettor_account_id, int(b.amount), int(b.amount) + shares[b.id], 0) for b in winning]
    return PoolSettlement(PROPORTIONAL, W, L, paid + losers)


async def list_bets(session: AsyncSession, competition_id: UUID) -> list[Bet]:
    return list((await session.execute(
        select(Bet).where(Bet.competition_id == competition_id).order_by(Bet.placed_at.asc(), Bet.id)
    )).scalars().all())


def betting_closes_at(comp: Competition) -> datetime | None:
    if comp.starts_at is None:
        return None
    closes = as_utc(comp.starts_at) + timedelta(hours=settings.betting_window_hours)
    ends = as_utc(comp.ends_at)
    return min(closes, ends) if ends else closes


async def place_bet(
    session: AsyncSession,
    competition_id: UUID,
    bettor_account_id: UUID,
    target_participant_id: UUID,
    amount: int,
    *,
    now: datetime | None = None,
) -> Bet:
    now = now or utcnow()
    comp = await session.get(Competition, competition_id)
    if not comp:
        raise NotFound("Competition not found")
    if comp.status != ACTIVE:
        raise InvalidState(f"bets are only accepted while active (status={comp.status})")
    closes = betting_closes_at(comp)
    if closes and now > closes:
        raise InvalidState("betting has closed for this competition")
    if amount < settings.min_bet or amount > settings.max_bet:
        raise InvalidAmount(f"bet must be between {settings.min_bet} and {settings.max_bet} GP")
    await ledger.get_account(session, bettor_account_id)

    participants = (await session.execute(
        select(Participant).where(Participant.competition_id == comp.id)
    )).scalars().all()
    if any(p.account_id == bettor_account_id for p in participants):
        raise SelfBet("participants cannot bet on their own competition")

    existing = await session.scalar(
        select(Bet).where(Bet.competition_id == comp.id, Bet.bettor_account_id == bettor_account_id)
    )
    if existing:
        raise DuplicateBet("already placed a bet on this competition")

    if not any(p.id == target_participant_id for p in participants):
        raise NotFound("target is not a participant of this competition")

    bet = Bet(
        competition_id=comp.id,
        bettor_account_id=bettor_account_id,
        target_participant_id=target_participant_id,
        amount=int(amount),
        placed_at=now,
    )
    session.add(bet)
    await session.flush()  # get bet.id

    await ledger.debit(
        session, bettor_account_id, int(amount), BET_ESCROW, comp.id,
        idempotency_key=f"bet_escrow:{comp.id}:{bettor_account_id}",
        note=f"bet:{bet.id}",
    )
    comp.total_pool = int(comp.total_pool or 0) + int(amount)
    await session.flush()
    log.info("bet_placed", competition_id=str(comp.id), bet_id=str(bet.id),
             bettor=str(bettor_account_id), target=str(target_participant_id), amount=amount)
    return bet


async def settle(session: AsyncSession, comp: Competition, winning_participant_ids: Iterable[UUID]) -> PoolSettlement:
    """Pay the pool out once. Callers guard re-entry with the competition's completed state."""
    bets = await list_bets(session, comp.id)
    result = compute_payouts(bets, winning_participant_ids)
    by_id = {b.id: b for b in bets}

    for p in result.payouts:
        bet = by_id[p.bet_id]
        bet.payout = p.payout
        bet.house_contribution = p.house_contribution
        if p.payout > 0:
            await ledger.credit(
                session, p.bettor_account_id, p.payout, BET_PAYOUT, comp.id,
                idempotency_key=f"bet_payout:{bet.id}",
                note=f"bet:{bet.id}",
            )
            bet.paid = True

    comp.house_contribution = result.house_contribution
    log.info("pool_settled", competition_id=str(comp.id), mode=result.mode,
             winning_stake=result.winning_stake, losing_stake=result.losing_stake,
             house_contribution=result.house_contribution, house_retained=result.house_retained)
    return result


async def refund_bets(session: AsyncSession, comp: Competition) -> int:
    """Return every unpaid stake in full (no contest, cancellation). Returns GP refunded."""
    refunded = 0
    for bet in await list_bets(session, comp.id):
        if bet.paid or bet.refunded:
            continue
        await ledger.credit(
            session, bet.bettor_account_id, int(bet.amount), BET_REFUND, comp.id,
            idempotency_key=f"bet_refund:{bet.id}",
            note=f"bet:{bet.id}",
        )
        bet.refunded = True
        bet.paid = True
        bet.payout = int(bet.amount)
        refunded += int(bet.amount)
    if refunded:
        log.info("bets_refunded", competition_id=str(comp.id), amount=refunded)
    return refunded


@dataclass(frozen=True)
class Odds:
    target_stake: int
    opposing_stake: int
    house_guaranteed: bool

    @property
    def ratio(self) -> float | None:
        """Opposing stake per GP on the target; None when nothing is on the target yet."""
        if self.target_stake == 0:
            return None
        return round(self.opposing_stake / self.target_stake, 2)


def implied_odds(bets: Iterable[BetLike], target_participant_id: UUID) -> Odds:
    totals: dict[UUID, int] = {}
    for b in bets:
        totals[b.target_participant_id] = totals.get(b.target_participant_id, 0) + int(b.amount)
    target = totals.get(target_participant_id, 0)
    opposing = sum(totals.values()) - target
    return Odds(target, opposing, house_guaranteed=opposing == 0)


def betting_summary(comp: Competition, bets: list[Bet], now: datetime | None = None) -> dict:
    now = now or utcnow()
    by_target: dict[str, int] = {}
    for b in bets:
        by_target[str(b.target_participant_id)] = by_target.get(str(b.target_participant_id), 0) + int(b.amount)
    closes = betting_closes_at(comp)
    return {
        "total_bets": len(bets),
        "total_amount": sum(int(b.amount) for b in bets),
        "by_target": by_target,
        "betting_open": comp.status == ACTIVE and (closes is None or now <= closes),
        "betting_closes_at": closes,
    }
