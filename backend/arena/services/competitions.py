from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID
import structlog
from sqlalchemy import select, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.config import settings
from arena.db import utcnow, as_utc
from arena.errors import (
    InsufficientFunds, InvalidState, CompetitionFull, AlreadyJoined, NotFound, InvalidAmount,
)
from arena.models.account import Account
from arena.models.competition import (
    Competition, Participant, OPEN, PENDING, ACTIVE, COMPLETED, DECLINED, CANCELLED, TERMINAL_STATES,
)
from arena.models.ledger import WAGER_ESCROW, WAGER_REFUND, WAGER_PAYOUT
from arena.services import ledger, betting
from arena.services.leaderboard import LeaderboardEntry, LeaderboardSnapshot, index_by_key
from arena.services.uow import run_in_transaction

log = structlog.get_logger()

# Every edge the state machine may take; anything else is InvalidState.
TRANSITIONS: dict[str, frozenset[str]] = {
    OPEN: frozenset({ACTIVE, CANCELLED}),
    PENDING: frozenset({ACTIVE, DECLINED, CANCELLED}),
    ACTIVE: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    DECLINED: frozenset(),
    CANCELLED: frozenset(),
}

OUTCOME_WINNER = "winner"
OUTCOME_TIE = "tie"
OUTCOME_NO_CONTEST = "no_contest"


def _transition(comp: Competition, target: str) -> None:
    if target not in TRANSITIONS[comp.status]:
        raise InvalidState(f"cannot move competition from {comp.status} to {target}")
    log.info("competition_transition", competition_id=str(comp.id), from_status=comp.status, to_status=target)
    comp.status = target


def _activate(comp: Competition, now: datetime) -> None:
    _transition(comp, ACTIVE)
    comp.starts_at = now
    comp.ends_at = now + timedelta(hours=settings.competition_duration_hours)


def enrollment_closes_at(comp: Competition) -> datetime:
    return as_utc(comp.created_at) + timedelta(hours=settings.open_enrollment_hours)


def participant_target(comp: Competition) -> int:
    """Head count at which an open competition starts; without a cap the first joiner starts it."""
    return comp.max_participants or 2


# ---------- reads ----------

async def get_competition(session: AsyncSession, competition_id: UUID) -> Competition:
    comp = await session.get(Competition, competition_id)
    if not comp:
        raise NotFound("Competition not found")
    return comp


async def list_participants(session: AsyncSession, competition_id: UUID) -> list[Participant]:
    return list((await session.execute(
        select(Participant)
        .where(Participant.competition_id == competition_id)
        .order_by(Participant.joined_at.asc(), Participant.id)
    )).scalars().all())


async def list_by_status(session: AsyncSession, *statuses: str) -> list[Competition]:
    return list((await session.execute(
        select(Competition).where(Competition.status.in_(statuses)).order_by(Competition.created_at.asc())
    )).scalars().all())


async def list_active(session: AsyncSession) -> list[Competition]:
    return await list_by_status(session, ACTIVE)


async def list_open(session: AsyncSession) -> list[Competition]:
    return await list_by_status(session, OPEN)


async def list_due_for_resolution(session: AsyncSession, now: datetime | None = None) -> list[Competition]:
    now = now or utcnow()
    return list((await session.execute(
        select(Competition)
        .where(Competition.status == ACTIVE, Competition.ends_at <= now)
        .order_by(Competition.ends_at.asc())
    )).scalars().all())


async def list_enrollment_lapsed(session: AsyncSession, now: datetime | None = None) -> list[Competition]:
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.open_enrollment_hours)
    return list((await session.execute(
        select(Competition)
        .where(Competition.status == OPEN, Competition.created_at <= cutoff)
        .order_by(Competition.created_at.asc())
    )).scalars().all())


async def find_live_between(session: AsyncSession, a: UUID, b: UUID) -> Competition | None:
    return await session.scalar(
        select(Competition).where(
            Competition.status.in_((PENDING, ACTIVE)),
            or_(
                and_(Competition.creator_account_id == a, Competition.opponent_account_id == b),
                and_(Competition.creator_account_id == b, Competition.opponent_account_id == a),
            ),
        )
    )


# ---------- escrow helpers ----------

async def _escrow_wager(session: AsyncSession, comp: Competition, account_id: UUID) -> None:
    await ledger.debit(
        session, account_id, int(comp.wager), WAGER_ESCROW, comp.id,
        idempotency_key=f"wager_escrow:{comp.id}:{account_id}",
    )


async def _refund_wagers(session: AsyncSession, comp: Competition) -> int:
    refunded = 0
    for p in await list_participants(session, comp.id):
        if not p.escrow_paid:
            continue
        if not await session.get(Account, p.account_id):
            log.error("refund_account_missing", competition_id=str(comp.id), account_id=str(p.account_id))
            continue
        await ledger.credit(
            session, p.account_id, int(comp.wager), WAGER_REFUND, comp.id,
            idempotency_key=f"wager_refund:{comp.id}:{p.account_id}",
        )
        p.escrow_paid = False
        refunded += int(comp.wager)
    return refunded


# ---------- transitions ----------

async def create_competition(
    session: AsyncSession,
    creator_account_id: UUID,
    opponent_account_id: UUID | None,
    wager: int,
    leaderboard_ref: str,
    metadata: dict | None = None,
    *,
    game_title: str | None = None,
    description: str | None = None,
    max_participants: int | None = None,
    now: datetime | None = None,
) -> Competition:
    """Open a competition and escrow the creator's wager. Fixed opponent => pending, else open."""
    now = now or utcnow()
    if wager < settings.min_wager:
        raise InvalidAmount(f"wager must be at least {settings.min_wager} GP")
    await ledger.get_account(session, creator_account_id)

    if opponent_account_id is not None:
        if opponent_account_id == creator_account_id:
            raise InvalidState("cannot challenge yourself")
        if max_participants is not None:
            raise InvalidState("max_participants only applies to open competitions")
        await ledger.get_account(session, opponent_account_id)
        if await find_live_between(session, creator_account_id, opponent_account_id):
            raise InvalidState("a pending or active competition already exists between these players")
    elif max_participants is not None and max_participants < 3:
        raise InvalidState("max_participants must be at least 3")

    comp = Competition(
        creator_account_id=creator_account_id,
        opponent_account_id=opponent_account_id,
        wager=int(wager),
        leaderboard_ref=str(leaderboard_ref),
        game_title=game_title,
        description=description,
        metadata_json=dict(metadata or {}),
        status=PENDING if opponent_account_id is not None else OPEN,
        max_participants=max_participants,
        participant_count=1,
        created_at=now,
    )
    session.add(comp)
    await session.flush()  # get comp.id

    session.add(Participant(competition_id=comp.id, account_id=creator_account_id, joined_at=now, escrow_paid=True))
    await _escrow_wager(session, comp, creator_account_id)
    await session.flush()
    log.info("competition_created", competition_id=str(comp.id), status=comp.status,
             creator=str(creator_account_id), opponent=str(opponent_account_id) if opponent_account_id else None,
             wager=comp.wager, leaderboard_ref=comp.leaderboard_ref)
    return comp


async def respond(
    session: AsyncSession,
    competition_id: UUID,
    account_id: UUID,
    accept: bool,
    *,
    now: datetime | None = None,
) -> Competition:
    """Invited opponent accepts (escrow, start the clock) or declines (refund the creator)."""
    now = now or utcnow()
    comp = await get_competition(session, competition_id)
    if comp.status != PENDING:
        raise InvalidState(f"competition is not awaiting a response (status={comp.status})")
    if account_id != comp.opponent_account_id:
        raise InvalidState("only the invited opponent may respond")

    if not accept:
        await _refund_wagers(session, comp)
        _transition(comp, DECLINED)
        await session.flush()
        return comp

    bal = await ledger.balance(session, account_id)
    if bal < comp.wager:
        # The creator's GP is already committed, so the competition cannot stay pending.
        await _refund_wagers(session, comp)
        _transition(comp, CANCELLED)
        comp.cancel_reason = "opponent_insufficient_funds"
        await session.flush()
        raise InsufficientFunds(f"need {comp.wager}, have {bal}; competition cancelled", commit_changes=True)

    await _escrow_wager(session, comp, account_id)
    session.add(Participant(competition_id=comp.id, account_id=account_id, joined_at=now, escrow_paid=True))
    comp.participant_count = 2
    _activate(comp, now)
    await session.flush()
    return comp


async def join(
    session: AsyncSession,
    competition_id: UUID,
    account_id: UUID,
    *,
    now: datetime | None = None,
) -> Participant:
    """Join an open competition, escrowing the wager. Filling the head count starts it."""
    now = now or utcnow()
    comp = await get_competition(session, competition_id)
    await ledger.get_account(session, account_id)

    if not comp.is_open_format:
        raise InvalidState("only open competitions can be joined")
    if comp.status != OPEN:
        if comp.status == ACTIVE and comp.max_participants and comp.participant_count >= comp.max_participants:
            raise CompetitionFull("competition has reached its participant cap")
        raise InvalidState(f"competition is not accepting participants (status={comp.status})")

    existing = await session.scalar(
        select(Participant).where(Participant.competition_id == comp.id, Participant.account_id == account_id)
    )
    if existing:
        raise AlreadyJoined("already part of this competition")
    if comp.max_participants and comp.participant_count >= comp.max_participants:
        raise CompetitionFull("competition has reached its participant cap")
    if now > enrollment_closes_at(comp):
        raise InvalidState("enrollment has closed for this competition")

    await _escrow_wager(session, comp, account_id)
    p = Participant(competition_id=comp.id, account_id=account_id, joined_at=now, escrow_paid=True)
    session.add(p)
    comp.participant_count = int(comp.participant_count) + 1
    if comp.participant_count >= participant_target(comp):
        _activate(comp, now)
    await session.flush()
    log.info("competition_joined", competition_id=str(comp.id), account_id=str(account_id),
             participants=comp.participant_count, status=comp.status)
    return p


async def close_enrollment(session: AsyncSession, competition_id: UUID, *, now: datetime | None = None) -> Competition:
    """Lapsed enrollment: start with whoever joined, or cancel and refund if nobody did."""
    now = now or utcnow()
    comp = await get_competition(session, competition_id)
    if comp.status != OPEN:
        return comp
    if now < enrollment_closes_at(comp):
        raise InvalidState("enrollment is still open")
    if comp.participant_count >= 2:
        _activate(comp, now)
    else:
        await _refund_wagers(session, comp)
        _transition(comp, CANCELLED)
        comp.cancel_reason = "no_participants"
    await session.flush()
    return comp


async def cancel(
    session: AsyncSession,
    competition_id: UUID,
    account_id: UUID | None = None,
    *,
    reason: str = "cancelled",
    override: bool = False,
) -> Competition:
    """
    Cancel and refund every live escrow (wagers and bets).
    Without override: only the creator, and only while open with no joiners or still pending.
    With override (forfeiture / data-integrity): any non-terminal competition.
    """
    comp = await get_competition(session, competition_id)
    if comp.status in TERMINAL_STATES:
        raise InvalidState(f"competition already {comp.status}")
    if not override:
        if account_id != comp.creator_account_id:
            raise InvalidState("only the creator may cancel this competition")
        if comp.status == ACTIVE:
            raise InvalidState("active competitions can only be cancelled by an administrator")
        if comp.status == OPEN and comp.participant_count > 1:
            raise InvalidState("cannot cancel a competition that has participants")

    await betting.refund_bets(session, comp)
    await _refund_wagers(session, comp)
    _transition(comp, CANCELLED)
    comp.cancel_reason = reason[:255]
    await session.flush()
    return comp


# ---------- resolution ----------

@dataclass(frozen=True)
class Standing:
    participant_id: UUID
    account_id: UUID
    rank: int | None
    score: str | None

    @property
    def competed(self) -> bool:
        return self.rank is not None and self.rank > 0


def rank_participants(
    participants: Iterable[tuple[UUID, UUID, str]],
    entries: Iterable[LeaderboardEntry],
) -> list[Standing]:
    """
    participants: (participant_id, account_id, leaderboard key) in join order.
    Ranked participants first, lower rank better; non-competitors keep join order at the end.
    """
    idx = index_by_key(entries)
    standings = []
    for pid, aid, key in participants:
        e = idx.get((key or "").lower())
        standings.append(Standing(pid, aid, e.rank if e else None, e.formatted_score if e else None))
    competed = sorted((s for s in standings if s.competed), key=lambda s: s.rank)
    return competed + [s for s in standings if not s.competed]


def winners_of(standings: list[Standing]) -> list[Standing]:
    competed = [s for s in standings if s.competed]
    if not competed:
        return []
    best = competed[0].rank
    return [s for s in competed if s.rank == best]


def split_pot(pot: int, winner_account_ids: Iterable[UUID]) -> dict[UUID, int]:
    """Equal split; the remainder goes one GP at a time by ascending account id."""
    ordered = sorted(winner_account_ids, key=str)
    if not ordered:
        return {}
    per, rem = divmod(pot, len(ordered))
    return {aid: per + (1 if i < rem else 0) for i, aid in enumerate(ordered)}


def _is_settled(comp: Competition) -> bool:
    """Completed, or cancelled by resolution itself (the only cancellation that stores a result)."""
    return comp.status == COMPLETED or (comp.status == CANCELLED and comp.result_json is not None)


async def _participant_keys(session: AsyncSession, participants: list[Participant]) -> list[tuple[UUID, UUID, str]] | None:
    rows = []
    for p in participants:
        acct = await session.get(Account, p.account_id)
        if not acct:
            return None
        rows.append((p.id, p.account_id, acct.display_name))
    return rows


async def settle_competition(
    session: AsyncSession,
    competition_id: UUID,
    entries: list[LeaderboardEntry],
    *,
    now: datetime | None = None,
) -> dict:
    """
    Active -> completed with the given leaderboard snapshot. A single winner settles
    the betting pool; a tie or no contest refunds every bet. A settled competition
    returns its stored result untouched.
    """
    now = now or utcnow()
    comp = await get_competition(session, competition_id)
    if _is_settled(comp):
        return comp.result_json
    if comp.status != ACTIVE:
        raise InvalidState(f"only active competitions can be resolved (status={comp.status})")

    participants = await list_participants(session, comp.id)
    keyed = await _participant_keys(session, participants)
    if keyed is None or any(not p.escrow_paid for p in participants):
        log.error("competition_integrity_failure", competition_id=str(comp.id))
        await cancel(session, comp.id, reason="integrity_failure", override=True)
        comp.result_json = {"outcome": CANCELLED, "reason": "integrity_failure", "settled_at": now.isoformat()}
        comp.settled_at = now
        await session.flush()
        return comp.result_json

    standings = rank_participants(keyed, entries)
    winners = winners_of(standings)
    pot = int(comp.wager) * len(participants)
    by_pid = {p.id: p for p in participants}
    for s in standings:
        by_pid[s.participant_id].rank = s.rank
        by_pid[s.participant_id].score = s.score

    pool = None
    bets_refunded = 0
    if not winners:
        bets_refunded = await betting.refund_bets(session, comp)
        await _refund_wagers(session, comp)
        shares: dict[UUID, int] = {}
        outcome = OUTCOME_NO_CONTEST
    else:
        shares = split_pot(pot, [w.account_id for w in winners])
        for aid, amt in sorted(shares.items(), key=lambda kv: str(kv[0])):
            if amt > 0:
                await ledger.credit(
                    session, aid, amt, WAGER_PAYOUT, comp.id,
                    idempotency_key=f"wager_payout:{comp.id}:{aid}",
                )
        for p in participants:
            p.escrow_paid = False  # escrow closed by payout
        if len(winners) == 1:
            pool = await betting.settle(session, comp, [winners[0].participant_id])
            outcome = OUTCOME_WINNER
        else:
            # a shared win settles no bets: every stake goes back
            bets_refunded = await betting.refund_bets(session, comp)
            outcome = OUTCOME_TIE

    result = {
        "outcome": outcome,
        "winner_participant_ids": [str(w.participant_id) for w in winners],
        "winner_account_ids": [str(w.account_id) for w in winners],
        "wager_pot": pot,
        "standings": [
            {
                "participant_id": str(s.participant_id),
                "account_id": str(s.account_id),
                "rank": s.rank,
                "score": s.score,
                "competed": s.competed,
                "payout": shares.get(s.account_id, 0) if winners else int(comp.wager),
            } for s in standings
        ],
        "betting": _pool_json(pool),
        "bets_refunded": bets_refunded,
        "settled_at": now.isoformat(),
    }
    _transition(comp, COMPLETED)
    comp.result_json = result
    comp.settled_at = now
    await session.flush()
    log.info("competition_settled", competition_id=str(comp.id), outcome=outcome,
             winners=result["winner_account_ids"], wager_pot=pot)
    return result


def _pool_json(pool: betting.PoolSettlement | None) -> dict | None:
    if pool is None:
        return None
    return {
        "mode": pool.mode,
        "winning_stake": pool.winning_stake,
        "losing_stake": pool.losing_stake,
        "house_contribution": pool.house_contribution,
        "house_retained": pool.house_retained,
        "payouts": [
            {
                "bet_id": str(p.bet_id),
                "bettor_account_id": str(p.bettor_account_id),
                "stake": p.stake,
                "payout": p.payout,
                "house_contribution": p.house_contribution,
            } for p in pool.payouts
        ],
    }


async def resolve(
    session_factory: async_sessionmaker[AsyncSession],
    snapshot: LeaderboardSnapshot,
    competition_id: UUID,
    *,
    override: bool = False,
    now: datetime | None = None,
) -> dict:
    """
    Idempotent resolution. The leaderboard is read before any ledger write, so a slow or
    failing provider leaves the competition untouched. Before ends_at only an override may resolve.
    """
    now = now or utcnow()
    async with session_factory() as session:
        comp = await get_competition(session, competition_id)
        if _is_settled(comp):
            return comp.result_json
        if comp.status != ACTIVE:
            raise InvalidState(f"only active competitions can be resolved (status={comp.status})")
        if not override and comp.ends_at is not None and now < as_utc(comp.ends_at):
            raise InvalidState(f"competition runs until {as_utc(comp.ends_at).isoformat()}")
        leaderboard_ref = comp.leaderboard_ref

    entries = await snapshot.get_entries(leaderboard_ref)
    return await run_in_transaction(session_factory, settle_competition, competition_id, entries, now=now)
