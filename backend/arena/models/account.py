from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, CheckConstraint, Uuid
from arena.db import Base, utcnow

class Account(Base):
    """
    Per-player GP account.
    gp_balance is a cached projection of the ledger; only services.ledger writes it.
    version backs optimistic concurrency: every UPDATE is guarded by
    "WHERE version = <loaded>", so two writers racing on one account cannot both commit.
    """
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)  # external identity
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)
    gp_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_grant_period: Mapped[str | None] = mapped_column(String(16), nullable=True)  # e.g. "2025-03"
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("gp_balance >= 0", name="ck_accounts_balance_non_negative"),
    )
