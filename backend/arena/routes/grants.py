from __future__ import annotations
from fastapi import APIRouter, Depends, Query

from arena.db import get_session_factory
from arena.schemas.grant import GrantResult
from arena.services.grants import run_grant, current_period

router = APIRouter(prefix="/grants", tags=["grants"])

@router.post("/run", response_model=GrantResult)
async def grant_current(
    amount: int | None = Query(default=None, gt=0),
    factory=Depends(get_session_factory),
):
    return await _grant(factory, current_period(), amount)

@router.post("/{period}", response_model=GrantResult)
async def grant_period(
    period: str,
    amount: int | None = Query(default=None, gt=0),
    factory=Depends(get_session_factory),
):
    return await _grant(factory, period, amount)

async def _grant(factory, period: str, amount: int | None) -> GrantResult:
    summary = await run_grant(factory, period, amount=amount)
    return GrantResult(
        period=summary.period, amount=summary.amount, granted=summary.granted,
        skipped=summary.skipped, failed=summary.failed,
    )
