from __future__ import annotations
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Any
from uuid import UUID
from datetime import datetime

CompetitionStatus = Literal["open", "pending", "active", "completed", "declined", "cancelled"]

class CompetitionCreate(BaseModel):
    creator_account_id: UUID
    opponent_account_id: UUID | None = None  # absent => open competition
    wager: int = Field(gt=0)
    leaderboard_ref: str = Field(min_length=1, max_length=64)
    game_title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    max_participants: int | None = Field(default=None, ge=3)
    metadata: dict[str, Any] = Field(default_factory=dict)

class RespondRequest(BaseModel):
    account_id: UUID
    action: Literal["accept", "decline"]

class JoinRequest(BaseModel):
    account_id: UUID

class CancelRequest(BaseModel):
    account_id: UUID | None = None
    reason: str = Field(default="cancelled", max_length=255)
    override: bool = False

class BetCreate(BaseModel):
    bettor_account_id: UUID
    target_participant_id: UUID
    amount: int = Field(gt=0)

class ParticipantPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    competition_id: UUID
    account_id: UUID
    joined_at: datetime
    escrow_paid: bool
    rank: int | None = None
    score: str | None = None

class BetPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    competition_id: UUID
    bettor_account_id: UUID
    target_participant_id: UUID
    amount: int
    placed_at: datetime
    paid: bool
    refunded: bool
    payout: int
    house_contribution: int

class CompetitionPublic(BaseModel):
    id: UUID
    creator_account_id: UUID
    opponent_account_id: UUID | None
    wager: int
    leaderboard_ref: str
    game_title: str | None
    description: str | None
    metadata: dict[str, Any]
    status: CompetitionStatus
    is_open_format: bool
    max_participants: int | None
    participant_count: int
    total_pool: int
    house_contribution: int
    created_at: datetime
    starts_at: datetime | None
    ends_at: datetime | None
    settled_at: datetime | None
    cancel_reason: str | None
    result: dict[str, Any] | None
    participants: list[ParticipantPublic]
    bets: list[BetPublic]

class BettingSummary(BaseModel):
    competition_id: UUID
    total_bets: int
    total_amount: int
    by_target: dict[str, int]
    betting_open: bool
    betting_closes_at: datetime | None
