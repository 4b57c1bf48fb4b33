from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "gp-arena-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "GP Arena")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/arena_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Leaderboard provider (RetroAchievements web API)
    leaderboard_api_url: str = os.getenv("LEADERBOARD_API_URL", "https://retroachievements.org/API")
    leaderboard_api_user: str = os.getenv("LEADERBOARD_API_USER", "")
    leaderboard_api_key: str = os.getenv("LEADERBOARD_API_KEY", "")
    leaderboard_timeout_seconds: float = float(os.getenv("LEADERBOARD_TIMEOUT_SECONDS", "10"))
    leaderboard_fetch_count: int = int(os.getenv("LEADERBOARD_FETCH_COUNT", "1000"))

    # Competition lifecycle
    competition_duration_hours: int = int(os.getenv("COMPETITION_DURATION_HOURS", "168"))  # 1 week
    open_enrollment_hours: int = int(os.getenv("OPEN_ENROLLMENT_HOURS", "72"))
    min_wager: int = int(os.getenv("MIN_WAGER", "10"))

    # Betting pool. Payout policy is a business rule pending product sign-off.
    betting_window_hours: int = int(os.getenv("BETTING_WINDOW_HOURS", "72"))
    min_bet: int = int(os.getenv("MIN_BET", "1"))
    max_bet: int = int(os.getenv("MAX_BET", "100"))
    house_guarantee_pct: int = int(os.getenv("HOUSE_GUARANTEE_PCT", "50"))
    pot_remainder_to_house: bool = os.getenv("POT_REMAINDER_TO_HOUSE", "1") == "1"

    # Periodic grant
    grant_amount: int = int(os.getenv("GRANT_AMOUNT", "1000"))

    # Optimistic concurrency
    max_conflict_retries: int = int(os.getenv("MAX_CONFLICT_RETRIES", "5"))

    leaderboard_default_top: int = int(os.getenv("LEADERBOARD_DEFAULT_TOP", "10"))

settings = Settings()
