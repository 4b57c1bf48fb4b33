from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Protocol
import httpx
import structlog

from arena.config import settings
from arena.errors import ExternalLookupFailed

log = structlog.get_logger()


@dataclass(frozen=True)
class LeaderboardEntry:
    participant_key: str
    rank: int
    score: float = 0
    formatted_score: str | None = None


class LeaderboardSnapshot(Protocol):
    async def get_entries(self, leaderboard_ref: str) -> list[LeaderboardEntry]: ...


def normalize_entries(raw: Iterable[dict] | None) -> list[LeaderboardEntry]:
    """
    Parse provider rows, tolerating the field spellings the API has used over time
    (User/user/username, Rank/rank/ApiRank, Score/score/Value). Sorted by rank, lower first.
    """
    out: list[LeaderboardEntry] = []
    for row in raw or []:
        if not row:
            continue
        user = str(row.get("User") or row.get("user") or row.get("username") or "").strip()
        if not user:
            continue
        score = row.get("Score", row.get("score", row.get("Value", row.get("value", 0)))) or 0
        formatted = row.get("FormattedScore") or row.get("formattedScore") or str(score)
        rank = row.get("Rank") or row.get("rank") or row.get("ApiRank") or row.get("apiRank") or 0
        try:
            rank_i = int(rank)
        except (TypeError, ValueError):
            rank_i = 0
        try:
            score_f = float(score)
        except (TypeError, ValueError):
            score_f = 0.0
        out.append(LeaderboardEntry(participant_key=user, rank=rank_i, score=score_f, formatted_score=str(formatted).strip()))
    out.sort(key=lambda e: e.rank)
    return out


def index_by_key(rows: Iterable[LeaderboardEntry]) -> dict[str, LeaderboardEntry]:
    """Case-insensitive lookup; the best positive rank for a key wins."""
    idx: dict[str, LeaderboardEntry] = {}
    for e in sorted(rows, key=lambda e: (e.rank <= 0, e.rank)):
        idx.setdefault(e.participant_key.lower(), e)
    return idx


class HttpLeaderboardSnapshot:
    """RetroAchievements-style leaderboard API client."""

    def __init__(self, base_url: str | None = None, api_user: str | None = None, api_key: str | None = None,
                 timeout: float | None = None, fetch_count: int | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or settings.leaderboard_api_url).rstrip("/")
        self.api_user = api_user if api_user is not None else settings.leaderboard_api_user
        self.api_key = api_key if api_key is not None else settings.leaderboard_api_key
        self.timeout = timeout or settings.leaderboard_timeout_seconds
        self.fetch_count = fetch_count or settings.leaderboard_fetch_count
        self._transport = transport

    async def get_entries(self, leaderboard_ref: str) -> list[LeaderboardEntry]:
        params = {"i": leaderboard_ref, "n": self.fetch_count, "z": self.api_user, "y": self.api_key}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                r = await client.get("/API_GetLeaderboardEntries.php", params=params)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("leaderboard_lookup_failed", leaderboard_ref=leaderboard_ref, error=str(e))
            raise ExternalLookupFailed(f"leaderboard {leaderboard_ref} unavailable: {e}") from e

        rows = data.get("Results") if isinstance(data, dict) else data
        if rows is not None and not isinstance(rows, list):
            raise ExternalLookupFailed(f"leaderboard {leaderboard_ref} returned an unexpected payload")
        entries = normalize_entries(rows)
        log.info("leaderboard_fetched", leaderboard_ref=leaderboard_ref, entries=len(entries))
        return entries


class StaticLeaderboardSnapshot:
    """In-memory snapshot keyed by leaderboard_ref; used for local runs and tests."""

    def __init__(self, boards: dict[str, list[LeaderboardEntry]] | None = None, fail: bool = False):
        self.boards: dict[str, list[LeaderboardEntry]] = dict(boards or {})
        self.fail = fail
        self.calls = 0

    def set(self, leaderboard_ref: str, rows: list[LeaderboardEntry]) -> None:
        self.boards[leaderboard_ref] = sorted(rows, key=lambda e: e.rank)

    async def get_entries(self, leaderboard_ref: str) -> list[LeaderboardEntry]:
        self.calls += 1
        if self.fail:
            raise ExternalLookupFailed(f"leaderboard {leaderboard_ref} unavailable")
        return list(self.boards.get(leaderboard_ref, []))


_default: LeaderboardSnapshot | None = None

def get_leaderboard_snapshot() -> LeaderboardSnapshot:
    global _default
    if _default is None:
        _default = HttpLeaderboardSnapshot()
    return _default
