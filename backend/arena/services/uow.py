from __future__ import annotations
from typing import Any, Awaitable, Callable, TypeVar
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from arena.config import settings
from arena.errors import ArenaError, ConcurrencyConflict

log = structlog.get_logger()

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"  # SQLSTATE


def is_unique_violation(e: IntegrityError) -> bool:
    """A lost insert race. Foreign-key and check failures are not, and retrying them cannot help."""
    if getattr(e.orig, "sqlstate", None) == UNIQUE_VIOLATION or getattr(e.orig, "pgcode", None) == UNIQUE_VIOLATION:
        return True
    return "unique" in str(e.orig).lower()


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    op: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: int | None = None,
    **kwargs: Any,
) -> T:
    """
    Run ``op(session, *args, **kwargs)`` in a fresh session and commit.

    A version mismatch (StaleDataError) or a lost unique-constraint race
    (IntegrityError) means another writer got there first: roll back and run
    the whole operation again from a fresh read. Engine errors roll back and
    propagate, except those flagged commit_changes.
    """
    attempts = attempts or settings.max_conflict_retries
    for attempt in range(1, attempts + 1):
        async with session_factory() as session:
            try:
                result = await op(session, *args, **kwargs)
                await session.commit()
                return result
            except StaleDataError as e:
                await session.rollback()
                log.warning("concurrency_conflict", op=op.__name__, attempt=attempt, error=type(e).__name__)
                continue
            except IntegrityError as e:
                await session.rollback()
                if not is_unique_violation(e):
                    log.error("integrity_violation", op=op.__name__, error=str(e.orig))
                    raise
                log.warning("concurrency_conflict", op=op.__name__, attempt=attempt, error=type(e).__name__)
                continue
            except ArenaError as e:
                if e.commit_changes:
                    await session.commit()
                else:
                    await session.rollback()
                raise
    raise ConcurrencyConflict(f"{op.__name__} lost {attempts} concurrent update races; retry later")
