from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from arena.config import settings

class Base(DeclarativeBase):
    pass

engine = create_async_engine(settings.database_url, future=True, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return SessionLocal

def utcnow() -> datetime:
    return datetime.now(dt_tz.utc)

def as_utc(value: datetime | None) -> datetime | None:
    """Some backends (SQLite) hand back naive datetimes; they are stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt_tz.utc)
    return value.astimezone(dt_tz.utc)
