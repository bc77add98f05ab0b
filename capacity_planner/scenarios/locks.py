"""Per-scenario mutual exclusion for overlay writers."""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

logger = logging.getLogger(__name__)


class ScenarioLockManager:
    """
    Hands out one asyncio.Lock per scenario id.

    Locks for several scenarios are always taken in sorted id order, so a
    merge holding (branch, parent) cannot deadlock against another merge or
    writer. Unused locks are dropped automatically.

    Usage:
        locks = ScenarioLockManager()
        async with locks.hold(branch_id, parent_id):
            ...
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, scenario_id: str) -> asyncio.Lock:
        lock = self._locks.get(scenario_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scenario_id] = lock
        return lock

    def is_locked(self, scenario_id: str) -> bool:
        lock = self._locks.get(scenario_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *scenario_ids: str) -> AsyncIterator[None]:
        """Hold the locks of every given scenario for the duration of the block."""
        ordered = sorted({sid for sid in scenario_ids if sid})
        held: List[asyncio.Lock] = []
        try:
            for scenario_id in ordered:
                lock = self._lock_for(scenario_id)
                await lock.acquire()
                held.append(lock)
            logger.debug(f"Holding scenario locks: {ordered}")
            yield
        finally:
            for lock in reversed(held):
                lock.release()
