from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.db import get_session, get_session_factory
from arena.models.competition import Competition
from arena.schemas.competition import (
    CompetitionCreate, CompetitionPublic, ParticipantPublic, BetPublic, BetCreate,
    RespondRequest, JoinRequest, CancelRequest, BettingSummary,
)
from arena.services import competitions, betting
from arena.services.leaderboard import LeaderboardSnapshot, get_leaderboard_snapshot
from arena.services.uow import run_in_transaction

router = APIRouter(prefix="/competitions", tags=["competitions"])

async def hydrate_public(session: AsyncSession, comp: Competition) -> CompetitionPublic:
    participants = await competitions.list_participants(session, comp.id)
    bets = await betting.list_bets(session, comp.id)
    return CompetitionPublic(
        id=comp.id, creator_account_id=comp.creator_account_id, opponent_account_id=comp.opponent_account_id,
        wager=comp.wager, leaderboard_ref=comp.leaderboard_ref, game_title=comp.game_title,
        description=comp.description, metadata=comp.metadata_json or {}, status=comp.status,
        is_open_format=comp.is_open_format, max_participants=comp.max_participants,
        participant_count=comp.participant_count, total_pool=comp.total_pool,
        house_contribution=comp.house_contribution, created_at=comp.created_at,
        starts_at=comp.starts_at, ends_at=comp.ends_at, settled_at=comp.settled_at,
        cancel_reason=comp.cancel_reason, result=comp.result_json,
        participants=[ParticipantPublic.model_validate(p) for p in participants],
        bets=[BetPublic.model_validate(b) for b in bets],
    )

async def _fresh(factory: async_sessionmaker[AsyncSession], competition_id: UUID) -> CompetitionPublic:
    async with factory() as session:
        comp = await competitions.get_competition(session, competition_id)
        return await hydrate_public(session, comp)

@router.post("", response_model=CompetitionPublic, status_code=201)
async def create_competition(payload: CompetitionCreate, factory=Depends(get_session_factory)):
    comp = await run_in_transaction(
        factory, competitions.create_competition,
        payload.creator_account_id, payload.opponent_account_id, payload.wager, payload.leaderboard_ref,
        payload.metadata,
        game_title=payload.game_title, description=payload.description,
        max_participants=payload.max_participants,
    )
    return await _fresh(factory, comp.id)

@router.get("/active", response_model=list[CompetitionPublic])
async def list_active(session: AsyncSession = Depends(get_session)):
    return [await hydrate_public(session, c) for c in await competitions.list_active(session)]

@router.get("/open", response_model=list[CompetitionPublic])
async def list_open(session: AsyncSession = Depends(get_session)):
    return [await hydrate_public(session, c) for c in await competitions.list_open(session)]

@router.get("/{competition_id}", response_model=CompetitionPublic)
async def get_competition(competition_id: UUID, session: AsyncSession = Depends(get_session)):
    comp = await competitions.get_competition(session, competition_id)
    return await hydrate_public(session, comp)

@router.post("/{competition_id}/respond", response_model=CompetitionPublic)
async def respond(competition_id: UUID, payload: RespondRequest, factory=Depends(get_session_factory)):
    await run_in_transaction(
        factory, competitions.respond, competition_id, payload.account_id, payload.action == "accept",
    )
    return await _fresh(factory, competition_id)

@router.post("/{competition_id}/join", response_model=ParticipantPublic, status_code=201)
async def join(competition_id: UUID, payload: JoinRequest, factory=Depends(get_session_factory)):
    p = await run_in_transaction(factory, competitions.join, competition_id, payload.account_id)
    return ParticipantPublic.model_validate(p)

@router.post("/{competition_id}/bets", response_model=BetPublic, status_code=201)
async def place_bet(competition_id: UUID, payload: BetCreate, factory=Depends(get_session_factory)):
    bet = await run_in_transaction(
        factory, betting.place_bet,
        competition_id, payload.bettor_account_id, payload.target_participant_id, payload.amount,
    )
    return BetPublic.model_validate(bet)

@router.get("/{competition_id}/bets/summary", response_model=BettingSummary)
async def bets_summary(competition_id: UUID, session: AsyncSession = Depends(get_session)):
    comp = await competitions.get_competition(session, competition_id)
    summary = betting.betting_summary(comp, await betting.list_bets(session, comp.id))
    return BettingSummary(competition_id=comp.id, **summary)

@router.post("/{competition_id}/resolve")
async def resolve(
    competition_id: UUID,
    override: bool = Query(default=False, description="Administrative early resolution"),
    factory=Depends(get_session_factory),
    snapshot: LeaderboardSnapshot = Depends(get_leaderboard_snapshot),
):
    result = await competitions.resolve(factory, snapshot, competition_id, override=override)
    return {"competition_id": str(competition_id), **(result or {})}

@router.post("/{competition_id}/cancel", response_model=CompetitionPublic)
async def cancel(competition_id: UUID, payload: CancelRequest, factory=Depends(get_session_factory)):
    await run_in_transaction(
        factory, competitions.cancel, competition_id, payload.account_id,
        reason=payload.reason, override=payload.override,
    )
    return await _fresh(factory, competition_id)
