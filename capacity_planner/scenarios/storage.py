"""
Unit of work with bounded retries for transient storage failures.

Every engine operation runs inside exactly one transaction:
- writes commit at the end or roll back entirely (no partial overlay state)
- reads run at the configured snapshot isolation level and never commit

Transient failures (lost connections, lock timeouts) are retried here,
invisibly to callers, up to STORAGE_MAX_ATTEMPTS. Logic errors are never
retried.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capacity_planner.config import settings
from capacity_planner.scenarios.errors import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[AsyncSession], Awaitable[T]]


def is_transient(exc: BaseException) -> bool:
    """Whether a storage error is worth retrying."""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (asyncio.TimeoutError, ConnectionError))


async def _begin_snapshot(session: AsyncSession) -> None:
    """Pin the transaction isolation level before the first read."""
    bind = session.bind
    if bind is None or bind.dialect.name == "sqlite":
        # SQLite connections already open an explicit transaction per unit of work
        return
    await session.connection(
        execution_options={"isolation_level": settings.SNAPSHOT_ISOLATION_LEVEL}
    )


async def run_unit_of_work(
    session_factory: async_sessionmaker,
    work: Work,
    *,
    read_only: bool = False,
    operation: str = "operation",
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run `work` in a fresh session and transaction, retrying transient failures.

    Args:
        session_factory: Factory producing AsyncSession objects
        work: Coroutine function receiving the session
        read_only: Run at snapshot isolation and never commit
        operation: Name used in log messages
        max_attempts: Override for STORAGE_MAX_ATTEMPTS

    Returns:
        Whatever `work` returns

    Raises:
        StorageUnavailable: when every attempt failed with a transient error
    """
    attempts = max(1, max_attempts or settings.STORAGE_MAX_ATTEMPTS)
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session:
                try:
                    if read_only:
                        await _begin_snapshot(session)
                    result = await work(session)
                    # reads end when the session closes; rollback() would expire the returned objects
                    if not read_only:
                        await session.commit()
                    return result
                except Exception:
                    await session.rollback()
                    raise
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_error = exc

        if attempt < attempts:
            delay = settings.STORAGE_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.warning(
                f"Transient storage failure during {operation} "
                f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {last_error}"
            )
            await asyncio.sleep(delay)

    logger.error(f"Storage unavailable during {operation} after {attempts} attempts: {last_error}")
    raise StorageUnavailable(f"Storage unavailable during {operation}") from last_error
