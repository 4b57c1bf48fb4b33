from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, ForeignKey, UniqueConstraint, Uuid
from arena.db import Base, utcnow

# Reason codes
GRANT = "GRANT"
ADJUST = "ADJUST"
WAGER_ESCROW = "WAGER_ESCROW"
WAGER_REFUND = "WAGER_REFUND"
WAGER_PAYOUT = "WAGER_PAYOUT"
BET_ESCROW = "BET_ESCROW"
BET_REFUND = "BET_REFUND"
BET_PAYOUT = "BET_PAYOUT"

class LedgerEntry(Base):
    """
    Append-only GP movements per account.
    Sign convention:
      - GRANT                                   => +amount (periodic stipend)
      - WAGER_ESCROW / BET_ESCROW               => -amount (held against a competition)
      - WAGER_REFUND / BET_REFUND               => +amount (escrow returned)
      - WAGER_PAYOUT / BET_PAYOUT               => +amount (settlement)
      - ADJUST                                  => +/- (admin correction)

    Σ(amount) per account == accounts.gp_balance at all times.
    Idempotency: idempotency_key is unique (e.g. "grant:2025-03:<account>").
    """
    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), index=True, nullable=False)

    reason: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)           # signed GP
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    ref_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)  # competition or bet id
    idempotency_key: Mapped[str | None] = mapped_column(String(96), nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_ledger_idempotency_key"),
    )
