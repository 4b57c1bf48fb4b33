from __future__ import annotations
from pydantic import BaseModel
from uuid import UUID

class GrantResult(BaseModel):
    period: str
    amount: int
    granted: list[UUID]
    skipped: int
    failed: list[UUID]
