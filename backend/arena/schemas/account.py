from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

class AccountCreate(BaseModel):
    user_key: str = Field(min_length=1, max_length=64)
    display_name: str | None = Field(default=None, max_length=64)

class AccountPublic(BaseModel):
    id: UUID
    user_key: str
    display_name: str
    gp_balance: int
    last_grant_period: str | None = None
    created_at: datetime

class LedgerEntryPublic(BaseModel):
    id: UUID
    account_id: UUID
    reason: str
    amount: int
    balance_after: int
    ref_id: UUID | None = None
    note: str | None = None
    created_at: datetime

class LedgerSnapshot(BaseModel):
    account_id: UUID
    balance: int
    entries: list[LedgerEntryPublic]

class BalanceRow(BaseModel):
    position: int
    account_id: UUID
    display_name: str
    gp_balance: int

class AdjustRequest(BaseModel):
    amount: int
    note: str = Field(min_length=3, max_length=255)
