from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Text, JSON, UniqueConstraint, Uuid
from arena.db import Base, utcnow

OPEN = "open"
PENDING = "pending"
ACTIVE = "active"
COMPLETED = "completed"
DECLINED = "declined"
CANCELLED = "cancelled"
TERMINAL_STATES = frozenset({COMPLETED, DECLINED, CANCELLED})

class Competition(Base):
    """
    One wager competition keyed to an external leaderboard.
    participant_count and total_pool are denormalised so that joins and bets
    always UPDATE this row, which bumps version and serialises racing writers.
    """
    __tablename__ = "competitions"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    creator_account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id"), index=True, nullable=False)
    opponent_account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("accounts.id"), index=True, nullable=True)
    wager: Mapped[int] = mapped_column(Integer, nullable=False)
    leaderboard_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    game_title: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text())
    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), index=True, nullable=False)  # open|pending|active|completed|declined|cancelled
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_pool: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # sum of bet stakes
    house_contribution: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open_format(self) -> bool:
        return self.opponent_account_id is None

class Participant(Base):
    __tablename__ = "participants"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), index=True, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id"), index=True, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    escrow_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)        # filled at settlement
    score: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("competition_id", "account_id", name="uq_participants_competition_account"),
    )

class Bet(Base):
    __tablename__ = "bets"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), index=True, nullable=False)
    bettor_account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id"), index=True, nullable=False)
    target_participant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("participants.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout: Mapped[int] = mapped_column(Integer, nullable=False, default=0)             # stake back + winnings
    house_contribution: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("competition_id", "bettor_account_id", name="uq_bets_one_per_bettor"),
    )
