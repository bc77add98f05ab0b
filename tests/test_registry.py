"""
Unit Tests for the Scenario Registry.

Tests:
1. Baseline bootstrap is idempotent, and the database holds at most one baseline
2. Branch and sandbox creation validates the base
3. Archive and delete lifecycle rules
4. Lineage chain materialisation
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from capacity_planner.scenarios.errors import (
    AlreadyTerminal,
    HasChildren,
    InvalidBase,
    InvalidKind,
    NotFound,
    ScenarioImmutable,
)
from capacity_planner.scenarios.models import OverlayEntry, Scenario, ScenarioKind, ScenarioStatus
from capacity_planner.scenarios.registry import ScenarioNode, ScenarioRegistry, materialize_chain


# =============================================================================
# TEST: BASELINE
# =============================================================================

class TestBaseline:
    """Tests for the single root baseline."""

    @pytest.mark.asyncio
    async def test_ensure_baseline_is_idempotent(self, scenario_engine):
        """Test that repeated bootstrap returns the same baseline."""
        first = await scenario_engine.ensure_baseline()
        second = await scenario_engine.ensure_baseline()

        assert first.id == second.id
        assert first.kind == ScenarioKind.BASELINE.value
        assert first.parent_id is None
        assert first.branch_point is None

        baselines = await scenario_engine.list_branches(kind="baseline")
        assert [s.id for s in baselines] == [first.id]

    @pytest.mark.asyncio
    async def test_second_baseline_rejected(self, scenario_engine, baseline):
        """Test that creating another baseline fails with InvalidKind."""
        with pytest.raises(InvalidKind):
            await scenario_engine.create_branch("Another root", kind="baseline")

    @pytest.mark.asyncio
    async def test_baseline_cannot_be_archived_or_deleted(self, scenario_engine, baseline):
        with pytest.raises(InvalidKind):
            await scenario_engine.archive_scenario(baseline.id)
        with pytest.raises(InvalidKind):
            await scenario_engine.delete_scenario(baseline.id)

    @pytest.mark.asyncio
    async def test_database_rejects_second_baseline_row(self, session_factory, baseline):
        """Test that a second baseline row written around the registry is refused by the database."""
        async with session_factory() as session:
            session.add(Scenario(name="Rogue root", kind=ScenarioKind.BASELINE.value))
            with pytest.raises(IntegrityError):
                await session.flush()
            await session.rollback()

        async with session_factory() as session:
            session.add_all([
                Scenario(name="Plan A", kind=ScenarioKind.BRANCH.value, parent_id=baseline.id),
                Scenario(name="Plan B", kind=ScenarioKind.BRANCH.value, parent_id=baseline.id),
            ])
            await session.commit()

    @pytest.mark.asyncio
    async def test_concurrent_bootstrap_returns_existing_baseline(self, scenario_engine, baseline, monkeypatch):
        """Test that losing the bootstrap race returns the baseline the other writer created."""
        real_get_baseline = ScenarioRegistry.get_baseline
        calls = []

        async def stale_get_baseline(self):
            calls.append(1)
            if len(calls) == 1:
                return None
            return await real_get_baseline(self)

        monkeypatch.setattr(ScenarioRegistry, "get_baseline", stale_get_baseline)

        again = await scenario_engine.ensure_baseline()

        assert again.id == baseline.id
        records = await scenario_engine.get_history(scenario_id=baseline.id)
        assert [r.action for r in records] == ["create"]


# =============================================================================
# TEST: CREATE
# =============================================================================

class TestCreate:
    """Tests for branch and sandbox creation."""

    @pytest.mark.asyncio
    async def test_create_branch_points_at_base(self, scenario_engine, baseline):
        """Test that a new branch stores only a parent pointer."""
        branch = await scenario_engine.create_branch(
            "Q3 plan", base_scenario_id=baseline.id, description="What if", created_by="planner"
        )

        assert branch.kind == ScenarioKind.BRANCH.value
        assert branch.status == ScenarioStatus.ACTIVE.value
        assert branch.parent_id == baseline.id
        assert branch.parent_name == baseline.name
        assert branch.branch_point is not None
        assert branch.created_by == "planner"

        entries = await scenario_engine.list_entries(branch.id)
        assert entries == []

    @pytest.mark.asyncio
    async def test_create_sandbox_from_branch(self, scenario_engine, branch):
        sandbox = await scenario_engine.create_branch("Try it", base_scenario_id=branch.id, kind="sandbox")

        assert sandbox.kind == ScenarioKind.SANDBOX.value
        assert sandbox.parent_id == branch.id

    @pytest.mark.asyncio
    async def test_create_requires_base(self, scenario_engine, baseline):
        with pytest.raises(InvalidBase):
            await scenario_engine.create_branch("Orphan")

    @pytest.mark.asyncio
    async def test_create_from_unknown_base(self, scenario_engine, baseline):
        with pytest.raises(NotFound):
            await scenario_engine.create_branch("Lost", base_scenario_id="scenario_missing")

    @pytest.mark.asyncio
    async def test_create_unknown_kind(self, scenario_engine, baseline):
        with pytest.raises(InvalidKind):
            await scenario_engine.create_branch("Odd", base_scenario_id=baseline.id, kind="fork")

    @pytest.mark.asyncio
    async def test_create_from_archived_base(self, scenario_engine, branch):
        """Test that archived scenarios cannot be branched from."""
        await scenario_engine.archive_scenario(branch.id)

        with pytest.raises(InvalidBase):
            await scenario_engine.create_branch("Too late", base_scenario_id=branch.id)

    @pytest.mark.asyncio
    async def test_create_from_merged_base(self, scenario_engine, branch):
        """Test that merged scenarios cannot be branched from."""
        await scenario_engine.merge_branch(branch.id)

        with pytest.raises(InvalidBase):
            await scenario_engine.create_branch("Too late", base_scenario_id=branch.id)


# =============================================================================
# TEST: LIFECYCLE
# =============================================================================

class TestLifecycle:
    """Tests for archive, update and delete."""

    @pytest.mark.asyncio
    async def test_archive_keeps_entries_and_blocks_writes(self, scenario_engine, branch):
        """Test that archived scenarios keep their overlay but reject writes."""
        await scenario_engine.put_entity(branch.id, "project", "project_zeus", {"priority": 1})

        archived = await scenario_engine.archive_scenario(branch.id)

        assert archived.status == ScenarioStatus.ARCHIVED.value
        assert len(await scenario_engine.list_entries(branch.id)) == 1
        with pytest.raises(ScenarioImmutable):
            await scenario_engine.put_entity(branch.id, "project", "project_zeus", {"priority": 2})
        with pytest.raises(ScenarioImmutable):
            await scenario_engine.remove_entity(branch.id, "project", "project_zeus")

    @pytest.mark.asyncio
    async def test_archive_twice(self, scenario_engine, branch):
        await scenario_engine.archive_scenario(branch.id)

        with pytest.raises(AlreadyTerminal):
            await scenario_engine.archive_scenario(branch.id)

    @pytest.mark.asyncio
    async def test_update_metadata_in_any_status(self, scenario_engine, branch):
        await scenario_engine.archive_scenario(branch.id)

        updated = await scenario_engine.update_scenario(branch.id, name="Old plan", description="Shelved")

        assert updated.name == "Old plan"
        assert updated.description == "Shelved"
        assert updated.status == ScenarioStatus.ARCHIVED.value

    @pytest.mark.asyncio
    async def test_delete_cascades_to_entries(self, scenario_engine, session_factory, branch):
        """Test that deleting a scenario removes its overlay entries."""
        await scenario_engine.put_entity(branch.id, "project", "project_zeus", {"priority": 1})

        await scenario_engine.delete_scenario(branch.id)

        with pytest.raises(NotFound):
            await scenario_engine.get_scenario(branch.id)

        async with session_factory() as session:
            remaining = await session.execute(
                select(func.count()).select_from(OverlayEntry).where(OverlayEntry.scenario_id == branch.id)
            )
            assert remaining.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_delete_with_children(self, scenario_engine, branch):
        await scenario_engine.create_branch("Child", base_scenario_id=branch.id, kind="sandbox")

        with pytest.raises(HasChildren):
            await scenario_engine.delete_scenario(branch.id)

    @pytest.mark.asyncio
    async def test_get_unknown(self, scenario_engine, baseline):
        with pytest.raises(NotFound):
            await scenario_engine.get_scenario("scenario_missing")

    @pytest.mark.asyncio
    async def test_list_filters(self, scenario_engine, baseline, branch):
        sandbox = await scenario_engine.create_branch("Sandbox", base_scenario_id=baseline.id, kind="sandbox")
        await scenario_engine.archive_scenario(sandbox.id)

        everything = await scenario_engine.list_branches()
        active = await scenario_engine.list_branches(status="active")
        children = await scenario_engine.list_branches(parent_id=baseline.id)

        assert [s.id for s in everything] == [baseline.id, branch.id, sandbox.id]
        assert {s.id for s in active} == {baseline.id, branch.id}
        assert {s.id for s in children} == {branch.id, sandbox.id}


# =============================================================================
# TEST: LINEAGE CHAIN
# =============================================================================

class TestChain:
    """Tests for lineage chain materialisation."""

    def _arena(self, *nodes):
        return {node.id: node for node in nodes}

    def test_chain_nearest_first(self):
        arena = self._arena(
            ScenarioNode("base", None, "baseline", "active"),
            ScenarioNode("b1", "base", "branch", "active"),
            ScenarioNode("s1", "b1", "sandbox", "active"),
        )

        assert materialize_chain(arena, "s1") == ["s1", "b1", "base"]
        assert materialize_chain(arena, "base") == ["base"]

    def test_chain_cycle_detected(self):
        arena = self._arena(
            ScenarioNode("a", "b", "branch", "active"),
            ScenarioNode("b", "a", "branch", "active"),
        )

        with pytest.raises(InvalidBase):
            materialize_chain(arena, "a")

    def test_chain_depth_bounded(self):
        nodes = [ScenarioNode("s0", None, "baseline", "active")]
        nodes += [ScenarioNode(f"s{i}", f"s{i - 1}", "branch", "active") for i in range(1, 10)]
        arena = self._arena(*nodes)

        with pytest.raises(InvalidBase):
            materialize_chain(arena, "s9", max_depth=5)
        assert len(materialize_chain(arena, "s9", max_depth=10)) == 10

    def test_chain_must_end_at_baseline(self):
        arena = self._arena(ScenarioNode("x", None, "branch", "active"))

        with pytest.raises(InvalidBase):
            materialize_chain(arena, "x")

    def test_chain_unknown_scenario(self):
        with pytest.raises(NotFound):
            materialize_chain({}, "missing")

    @pytest.mark.asyncio
    async def test_checkout_returns_lineage(self, scenario_engine, baseline, branch):
        sandbox = await scenario_engine.create_branch("Try", base_scenario_id=branch.id, kind="sandbox")

        handle = await scenario_engine.checkout_branch(sandbox.id)

        assert handle.scenario_id == sandbox.id
        assert handle.writable is True
        assert handle.lineage == [sandbox.id, branch.id, baseline.id]
