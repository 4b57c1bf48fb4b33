from __future__ import annotations
from fastapi import APIRouter, Depends, Query, Request
from datetime import datetime, timezone
from rq import Queue
from redis import Redis

from arena.config import settings
from arena.db import get_session_factory
from arena.jobs.sweep import periodic_sweep, sweep_once
from arena.services.leaderboard import LeaderboardSnapshot, get_leaderboard_snapshot

router = APIRouter()

_redis = Redis.from_url(settings.redis_url)
q = Queue("default", connection=_redis)

def get_queue() -> Queue:
    return q

@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "build": "docker",
    }

@router.post("/system/sweep", status_code=202)
async def trigger_sweep(
    inline: bool = Query(default=False, description="Run in-process instead of on the worker"),
    queue: Queue = Depends(get_queue),
    factory=Depends(get_session_factory),
    snapshot: LeaderboardSnapshot = Depends(get_leaderboard_snapshot),
):
    if inline:
        return {"queued": False, "report": await sweep_once(factory, snapshot)}
    job = queue.enqueue(periodic_sweep, job_timeout=300)
    return {"queued": True, "job_id": job.id}
