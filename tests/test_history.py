"""
Tests for the commit log written alongside every engine mutation.
"""

import pytest

from capacity_planner.scenarios.errors import InvalidPayload


class TestCommitHistory:
    """Tests for history records."""

    @pytest.mark.asyncio
    async def test_one_record_per_mutation(self, scenario_engine, branch, make_assignment):
        await scenario_engine.put_entity(branch.id, "assignment", "asgn_new", make_assignment(), author="planner")
        await scenario_engine.put_entity(branch.id, "assignment", "asgn_new", {"allocation": 20}, author="planner")
        await scenario_engine.remove_entity(branch.id, "assignment", "asgn_new", author="planner")

        records = await scenario_engine.get_history(scenario_id=branch.id, entity_id="asgn_new")

        assert sorted(r.action for r in records) == ["put", "put", "remove"]
        assert all(r.author == "planner" for r in records)
        assert all(r.entity_type == "assignment" for r in records)

    @pytest.mark.asyncio
    async def test_put_records_field_changes(self, scenario_engine, branch):
        await scenario_engine.put_entity(branch.id, "assignment", "asgn_alice_apollo", {"allocation": 75})

        records = await scenario_engine.get_history(scenario_id=branch.id, entity_type="assignment")

        assert len(records) == 1
        assert records[0].message == "Update assignment asgn_alice_apollo"
        assert records[0].extra_data == {"changes": {"allocation": [60, 75]}}

    @pytest.mark.asyncio
    async def test_new_entity_message(self, scenario_engine, branch, make_assignment):
        await scenario_engine.put_entity(branch.id, "assignment", "asgn_new", make_assignment())

        records = await scenario_engine.get_history(entity_id="asgn_new")

        assert records[0].message == "Add assignment asgn_new"
        assert records[0].extra_data["changes"]["allocation"] == [None, 10]

    @pytest.mark.asyncio
    async def test_rejected_write_not_recorded(self, scenario_engine, branch):
        with pytest.raises(InvalidPayload):
            await scenario_engine.put_entity(branch.id, "project", "project_zeus", {"priority": "high"})

        assert await scenario_engine.get_history(scenario_id=branch.id, entity_id="project_zeus") == []

    @pytest.mark.asyncio
    async def test_lifecycle_records(self, scenario_engine, baseline, branch):
        await scenario_engine.archive_scenario(branch.id, author="lead")

        records = await scenario_engine.get_history(scenario_id=branch.id)

        assert sorted(r.action for r in records) == ["archive", "create"]
        assert all(r.entity_id is None for r in records)

    @pytest.mark.asyncio
    async def test_delete_keeps_history(self, scenario_engine, branch):
        await scenario_engine.put_entity(branch.id, "project", "project_zeus", {"priority": 1})
        await scenario_engine.delete_scenario(branch.id)

        records = await scenario_engine.get_history(scenario_id=branch.id)

        assert sorted(r.action for r in records) == ["create", "delete", "put"]

    @pytest.mark.asyncio
    async def test_newest_first_and_limit(self, scenario_engine, branch):
        for priority in range(1, 5):
            await scenario_engine.put_entity(branch.id, "project", "project_zeus", {"priority": priority})

        records = await scenario_engine.get_history(scenario_id=branch.id, entity_id="project_zeus")
        limited = await scenario_engine.get_history(scenario_id=branch.id, limit=2)

        times = [r.timestamp for r in records]
        assert times == sorted(times, reverse=True)
        assert len(limited) == 2
