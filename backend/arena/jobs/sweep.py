from __future__ import annotations
import asyncio
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from arena.db import SessionLocal, utcnow
from arena.errors import ArenaError
from arena.services import competitions, grants
from arena.services.leaderboard import LeaderboardSnapshot, get_leaderboard_snapshot
from arena.services.uow import run_in_transaction

log = structlog.get_logger()


async def sweep_once(
    session_factory: async_sessionmaker[AsyncSession],
    snapshot: LeaderboardSnapshot,
    now: datetime | None = None,
    *,
    run_grant: bool = True,
) -> dict:
    """
    One pass of the periodic trigger:
      1) stipend for the current period
      2) open competitions whose enrollment lapsed: start or cancel
      3) active competitions past ends_at: resolve
    A failure on one competition is logged and left for the next pass.
    """
    now = now or utcnow()
    report = {"granted": 0, "enrollment_closed": [], "resolved": [], "errors": []}

    if run_grant:
        summary = await grants.run_grant(session_factory, grants.current_period(now))
        report["granted"] = len(summary.granted)

    async with session_factory() as session:
        lapsed = [c.id for c in await competitions.list_enrollment_lapsed(session, now)]
        due = [c.id for c in await competitions.list_due_for_resolution(session, now)]

    for cid in lapsed:
        try:
            comp = await run_in_transaction(session_factory, competitions.close_enrollment, cid, now=now)
            report["enrollment_closed"].append({"id": str(cid), "status": comp.status})
        except ArenaError as e:
            log.warning("sweep_enrollment_failed", competition_id=str(cid), error=str(e))
            report["errors"].append({"id": str(cid), "error": type(e).__name__})

    for cid in due:
        try:
            result = await competitions.resolve(session_factory, snapshot, cid, now=now)
            report["resolved"].append({"id": str(cid), "outcome": result.get("outcome")})
        except ArenaError as e:
            log.warning("sweep_resolve_failed", competition_id=str(cid), error=str(e))
            report["errors"].append({"id": str(cid), "error": type(e).__name__})

    log.info("sweep_completed", granted=report["granted"], enrollment_closed=len(report["enrollment_closed"]),
             resolved=len(report["resolved"]), errors=len(report["errors"]))
    return report


async def _run() -> dict:
    return await sweep_once(SessionLocal, get_leaderboard_snapshot())


def periodic_sweep():
    # RQ entry point (sync); run the async coroutine
    return asyncio.run(_run())
