"""Shared test fixtures and configuration for capacity planner tests."""
import pytest
import pytest_asyncio
from datetime import date

from capacity_planner.config import settings
from capacity_planner.data.models import Person, Project, ProjectAssignment, ProjectPhaseTimeline
from capacity_planner.database import create_engine, create_session_factory, init_db
from capacity_planner.scenarios.service import ScenarioEngine


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A file-backed SQLite database per test, with every table created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'planner.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """Keep retry backoff out of test run time."""
    monkeypatch.setattr(settings, "STORAGE_RETRY_BACKOFF_SECONDS", 0.0)


# =============================================================================
# CANONICAL DATA
# =============================================================================

@pytest_asyncio.fixture
async def canonical_data(session_factory):
    """
    Live plan the baseline resolves to:
    - Alice (60%) and Bob (40%) on Apollo as developers, covering its 100% demand
    - Zeus, a project with no assignments
    - Apollo's build phase
    """
    async with session_factory() as session:
        session.add_all([
            Person(id="person_alice", name="Alice", email="alice@example.com", primary_role_id="role_dev"),
            Person(id="person_bob", name="Bob", email="bob@example.com", primary_role_id="role_dev"),
        ])
        await session.flush()

        session.add_all([
            Project(
                id="project_apollo",
                name="Apollo",
                priority=1,
                aspiration_start=date(2026, 1, 1),
                aspiration_finish=date(2026, 6, 30),
                role_demands={"role_dev": 100},
            ),
            Project(id="project_zeus", name="Zeus", priority=3),
        ])
        await session.flush()

        session.add_all([
            ProjectAssignment(
                id="asgn_alice_apollo",
                project_id="project_apollo",
                person_id="person_alice",
                role_id="role_dev",
                start_date=date(2026, 1, 1),
                end_date=date(2026, 6, 30),
                allocation=60,
            ),
            ProjectAssignment(
                id="asgn_bob_apollo",
                project_id="project_apollo",
                person_id="person_bob",
                role_id="role_dev",
                start_date=date(2026, 1, 1),
                end_date=date(2026, 5, 31),
                allocation=40,
            ),
            ProjectPhaseTimeline(
                id="phase_apollo_build",
                project_id="project_apollo",
                phase_id="phase_build",
                name="Build",
                start_date=date(2026, 1, 1),
                end_date=date(2026, 6, 15),
            ),
        ])
        await session.commit()


# =============================================================================
# ENGINE
# =============================================================================

@pytest_asyncio.fixture
async def scenario_engine(session_factory, canonical_data):
    return ScenarioEngine(session_factory)


@pytest_asyncio.fixture
async def baseline(scenario_engine):
    return await scenario_engine.ensure_baseline()


@pytest_asyncio.fixture
async def branch(scenario_engine, baseline):
    return await scenario_engine.create_branch("Hiring plan", base_scenario_id=baseline.id, created_by="planner")


@pytest.fixture
def make_assignment():
    """Factory for complete assignment payloads on Apollo."""
    def factory(**overrides):
        payload = {
            "project_id": "project_apollo",
            "person_id": "person_alice",
            "role_id": "role_dev",
            "start_date": "2026-01-01",
            "end_date": "2026-06-30",
            "allocation": 10,
        }
        payload.update(overrides)
        return payload
    return factory
