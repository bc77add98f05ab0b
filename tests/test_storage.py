"""
Tests for the unit-of-work runner and scenario locks.

Tests:
1. Transient failures are retried, then surface as StorageUnavailable
2. Logic errors are never retried
3. A failed unit of work leaves nothing behind
4. Scenario locks serialise holders and never deadlock on ordering
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from capacity_planner.data.models import Person
from capacity_planner.scenarios.errors import NotFound, StorageUnavailable
from capacity_planner.scenarios.locks import ScenarioLockManager
from capacity_planner.scenarios.storage import is_transient, run_unit_of_work


def transient_error():
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


# =============================================================================
# TEST: RETRIES
# =============================================================================

class TestRunUnitOfWork:
    """Tests for transactional execution with bounded retries."""

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self, session_factory):
        """Test that work failing transiently once succeeds on the next attempt."""
        work = AsyncMock(side_effect=[transient_error(), "done"])

        result = await run_unit_of_work(session_factory, work, operation="test", max_attempts=3)

        assert result == "done"
        assert work.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_storage_unavailable(self, session_factory):
        work = AsyncMock(side_effect=transient_error())

        with pytest.raises(StorageUnavailable) as exc_info:
            await run_unit_of_work(session_factory, work, operation="test", max_attempts=3)

        assert work.await_count == 3
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.code == "storage_unavailable"

    @pytest.mark.asyncio
    async def test_logic_errors_not_retried(self, session_factory):
        work = AsyncMock(side_effect=NotFound("Scenario missing not found"))

        with pytest.raises(NotFound):
            await run_unit_of_work(session_factory, work, operation="test", max_attempts=3)

        assert work.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_work_rolls_back(self, session_factory, canonical_data):
        """Test that nothing a failing unit of work flushed is kept."""
        async def work(db):
            db.add(Person(id="person_temp", name="Temp"))
            await db.flush()
            raise NotFound("abort")

        with pytest.raises(NotFound):
            await run_unit_of_work(session_factory, work)

        async with session_factory() as session:
            result = await session.execute(select(Person).where(Person.id == "person_temp"))
            assert result.scalar_one_or_none() is None

    @pytest.mark.asyncio
    async def test_writes_commit(self, session_factory, canonical_data):
        async def work(db):
            db.add(Person(id="person_carol", name="Carol"))

        await run_unit_of_work(session_factory, work)

        async with session_factory() as session:
            assert (await session.get(Person, "person_carol")).name == "Carol"

    def test_is_transient(self):
        assert is_transient(transient_error())
        assert is_transient(asyncio.TimeoutError())
        assert is_transient(ConnectionResetError())
        assert not is_transient(NotFound())
        assert not is_transient(ValueError("bad"))


# =============================================================================
# TEST: LOCKS
# =============================================================================

class TestScenarioLocks:
    """Tests for per-scenario mutual exclusion."""

    @pytest.mark.asyncio
    async def test_holders_of_one_scenario_serialise(self):
        locks = ScenarioLockManager()
        inside = []
        overlaps = []

        async def writer():
            async with locks.hold("scenario_a"):
                inside.append(1)
                overlaps.append(len(inside))
                await asyncio.sleep(0)
                inside.pop()

        await asyncio.gather(*[writer() for _ in range(5)])

        assert overlaps == [1, 1, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_opposite_order_does_not_deadlock(self):
        locks = ScenarioLockManager()
        done = []

        async def hold(first, second):
            async with locks.hold(first, second):
                await asyncio.sleep(0)
                done.append((first, second))

        await asyncio.wait_for(
            asyncio.gather(hold("scenario_a", "scenario_b"), hold("scenario_b", "scenario_a")),
            timeout=1,
        )

        assert len(done) == 2

    @pytest.mark.asyncio
    async def test_released_after_error(self):
        locks = ScenarioLockManager()

        with pytest.raises(ValueError):
            async with locks.hold("scenario_a", None):
                assert locks.is_locked("scenario_a")
                raise ValueError("boom")

        assert not locks.is_locked("scenario_a")
