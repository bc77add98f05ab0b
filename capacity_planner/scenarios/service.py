"""
Scenario Engine - Entry point for every scenario versioning operation.

Each public method is one unit of work:
1. Take the per-scenario locks it needs (writers only)
2. Open a session and transaction via run_unit_of_work (retried on transient failures)
3. Delegate to the registry, overlay store, resolver, comparator or merge coordinator
4. Record the commit log entry in the same transaction

The "current" scenario is never held here: callers pass the scenario id they
checked out on every call.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capacity_planner.audit.models import CommitLog
from capacity_planner.audit.services import CommitLogService
from capacity_planner.config import settings
from capacity_planner.data.entities import EntityType
from capacity_planner.scenarios.comparison import ScenarioComparator, modified_fields
from capacity_planner.scenarios.errors import NotFound
from capacity_planner.scenarios.lineage import LineageResolver
from capacity_planner.scenarios.locks import ScenarioLockManager
from capacity_planner.scenarios.merge import MergeCoordinator
from capacity_planner.scenarios.models import OverlayEntry, Scenario, ScenarioKind
from capacity_planner.scenarios.overlay import OverlayLookup, OverlayStore, coerce_entity_type
from capacity_planner.scenarios.registry import ScenarioRegistry
from capacity_planner.scenarios.schemas import (
    CheckoutResponse,
    ComparisonResult,
    MergePreview,
    MergeResult,
    ScenarioResponse,
)
from capacity_planner.scenarios.storage import run_unit_of_work

logger = logging.getLogger(__name__)


class ScenarioEngine:
    """
    Facade over the scenario versioning components.

    Usage:
        engine = ScenarioEngine(async_session_maker)
        baseline = await engine.ensure_baseline()
        branch = await engine.create_branch("Hire two devs", base_scenario_id=baseline.id)
        await engine.put_entity(branch.id, EntityType.ASSIGNMENT, "asgn_1", {"allocation": 80})
        result = await engine.compare_branches(baseline.id, branch.id)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        locks: Optional[ScenarioLockManager] = None,
    ):
        if session_factory is None:
            from capacity_planner.database import async_session_maker
            session_factory = async_session_maker
        self.session_factory = session_factory
        self.locks = locks or ScenarioLockManager()

    async def _run(self, work, operation: str, read_only: bool = False):
        return await run_unit_of_work(self.session_factory, work, read_only=read_only, operation=operation)

    # ==========================================================================
    # Registry
    # ==========================================================================

    async def ensure_baseline(self, name: Optional[str] = None, created_by: Optional[str] = None) -> Scenario:
        async def work(db: AsyncSession) -> Scenario:
            registry = ScenarioRegistry(db)
            existing = await registry.get_baseline()
            if existing is not None:
                return existing
            baseline = await registry.create_baseline(name=name, created_by=created_by)
            if baseline is None:
                return await registry.get_baseline()
            await CommitLogService(db, author=created_by).log_lifecycle(
                baseline.id, "create", f"Create baseline {baseline.name}"
            )
            return baseline

        return await self._run(work, "ensure_baseline")

    async def list_branches(
        self,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> List[Scenario]:
        async def work(db: AsyncSession) -> List[Scenario]:
            return await ScenarioRegistry(db).list_scenarios(kind=kind, status=status, parent_id=parent_id)

        return await self._run(work, "list_branches", read_only=True)

    async def get_scenario(self, scenario_id: str) -> Scenario:
        async def work(db: AsyncSession) -> Scenario:
            return await ScenarioRegistry(db).get(scenario_id)

        return await self._run(work, "get_scenario", read_only=True)

    async def create_branch(
        self,
        name: str,
        base_scenario_id: Optional[str] = None,
        description: Optional[str] = None,
        kind: str = ScenarioKind.BRANCH.value,
        created_by: Optional[str] = None,
    ) -> Scenario:
        """Create a branch or sandbox on top of an existing active scenario."""
        async def work(db: AsyncSession) -> Scenario:
            scenario = await ScenarioRegistry(db).create(
                kind=kind,
                name=name,
                base_scenario_id=base_scenario_id,
                description=description,
                created_by=created_by,
            )
            await CommitLogService(db, author=created_by).log_lifecycle(
                scenario.id, "create", f"Create {scenario.kind} {scenario.name} from {scenario.parent_id}"
            )
            return scenario

        return await self._run(work, "create_branch")

    async def update_scenario(
        self,
        scenario_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Scenario:
        async def work(db: AsyncSession) -> Scenario:
            return await ScenarioRegistry(db).update(scenario_id, name=name, description=description)

        return await self._run(work, "update_scenario")

    async def archive_scenario(self, scenario_id: str, author: Optional[str] = None) -> Scenario:
        async def work(db: AsyncSession) -> Scenario:
            scenario = await ScenarioRegistry(db).archive(scenario_id)
            await CommitLogService(db, author=author).log_lifecycle(
                scenario.id, "archive", f"Archive {scenario.name}"
            )
            return scenario

        async with self.locks.hold(scenario_id):
            return await self._run(work, "archive_scenario")

    async def delete_scenario(self, scenario_id: str, author: Optional[str] = None) -> Scenario:
        async def work(db: AsyncSession) -> Scenario:
            scenario = await ScenarioRegistry(db).delete(scenario_id)
            await CommitLogService(db, author=author).log_lifecycle(
                scenario.id, "delete", f"Delete {scenario.name}"
            )
            return scenario

        async with self.locks.hold(scenario_id):
            return await self._run(work, "delete_scenario")

    async def checkout_branch(self, scenario_id: str) -> CheckoutResponse:
        """Validate a scenario and return a handle for the caller to keep."""
        async def work(db: AsyncSession) -> CheckoutResponse:
            registry = ScenarioRegistry(db)
            scenario = await registry.get(scenario_id)
            lineage = await registry.chain(scenario.id)
            return CheckoutResponse(
                scenario_id=scenario.id,
                name=scenario.name,
                kind=scenario.kind,
                status=scenario.status,
                writable=scenario.is_active,
                lineage=lineage,
            )

        return await self._run(work, "checkout_branch", read_only=True)

    # ==========================================================================
    # Overlay
    # ==========================================================================

    async def put_entity(
        self,
        scenario_id: str,
        entity_type: "EntityType | str",
        entity_id: str,
        payload: Mapping[str, Any],
        author: Optional[str] = None,
    ) -> OverlayEntry:
        """
        Add or modify an entity in a scenario.

        Fields in `payload` are patched over the entity's current effective
        value; a new entity needs every required field.
        """
        entity_type = coerce_entity_type(entity_type)

        async def work(db: AsyncSession) -> OverlayEntry:
            overlay = OverlayStore(db)
            await overlay.ensure_writable(scenario_id)
            current = await LineageResolver(db).resolve(scenario_id, entity_type, entity_id)

            entry, _ = await overlay.put(scenario_id, entity_type, entity_id, payload, current=current)
            changes = {
                name: [(current or {}).get(name), entry.payload.get(name)]
                for name in modified_fields(entity_type, current or {}, entry.payload)
            }
            await CommitLogService(db, author=author).log_put(
                scenario_id, entity_type.value, entity_id, changes, created=current is None
            )
            logger.debug(f"Put {entity_type.value}/{entity_id} in {scenario_id}: {sorted(changes)}")
            return entry

        async with self.locks.hold(scenario_id):
            return await self._run(work, "put_entity")

    async def remove_entity(
        self,
        scenario_id: str,
        entity_type: "EntityType | str",
        entity_id: str,
        author: Optional[str] = None,
    ) -> OverlayEntry:
        """
        Delete an entity from a scenario by writing a tombstone.

        Raises:
            NotFound: the entity does not resolve in the scenario
        """
        entity_type = coerce_entity_type(entity_type)

        async def work(db: AsyncSession) -> OverlayEntry:
            overlay = OverlayStore(db)
            await overlay.ensure_writable(scenario_id)
            current = await LineageResolver(db).resolve(scenario_id, entity_type, entity_id)
            if current is None:
                raise NotFound(f"{entity_type.value} {entity_id} not found in scenario {scenario_id}")

            entry, _ = await overlay.remove(scenario_id, entity_type, entity_id)
            await CommitLogService(db, author=author).log_remove(scenario_id, entity_type.value, entity_id)
            logger.debug(f"Removed {entity_type.value}/{entity_id} in {scenario_id}")
            return entry

        async with self.locks.hold(scenario_id):
            return await self._run(work, "remove_entity")

    async def resolve_entity(
        self,
        scenario_id: str,
        entity_type: "EntityType | str",
        entity_id: str,
    ) -> Optional[Dict[str, Any]]:
        async def work(db: AsyncSession) -> Optional[Dict[str, Any]]:
            return await LineageResolver(db).resolve(scenario_id, entity_type, entity_id)

        return await self._run(work, "resolve_entity", read_only=True)

    async def effective_entities(self, scenario_id: str, entity_type: "EntityType | str") -> Dict[str, Dict[str, Any]]:
        async def work(db: AsyncSession) -> Dict[str, Dict[str, Any]]:
            return await LineageResolver(db).effective_set(scenario_id, entity_type)

        return await self._run(work, "effective_entities", read_only=True)

    async def lookup_entry(self, scenario_id: str, entity_type: "EntityType | str", entity_id: str) -> OverlayLookup:
        """The scenario's own overlay state for a key, without falling through."""
        async def work(db: AsyncSession) -> OverlayLookup:
            await ScenarioRegistry(db).get(scenario_id)
            return await OverlayStore(db).lookup(scenario_id, entity_type, entity_id)

        return await self._run(work, "lookup_entry", read_only=True)

    async def list_entries(self, scenario_id: str, entity_type: Optional[str] = None) -> List[OverlayEntry]:
        async def work(db: AsyncSession) -> List[OverlayEntry]:
            await ScenarioRegistry(db).get(scenario_id)
            return await OverlayStore(db).entries_for(scenario_id, entity_type)

        return await self._run(work, "list_entries", read_only=True)

    # ==========================================================================
    # Compare & merge
    # ==========================================================================

    async def compare_branches(self, scenario_a_id: str, scenario_b_id: str) -> ComparisonResult:
        async def work(db: AsyncSession) -> ComparisonResult:
            return await ScenarioComparator(db).compare(scenario_a_id, scenario_b_id)

        return await self._run(work, "compare_branches", read_only=True)

    async def compare_to_parent(self, scenario_id: str) -> ComparisonResult:
        async def work(db: AsyncSession) -> ComparisonResult:
            return await ScenarioComparator(db).compare_to_parent(scenario_id)

        return await self._run(work, "compare_to_parent", read_only=True)

    async def preview_merge(self, branch_id: str) -> MergePreview:
        async def work(db: AsyncSession) -> MergePreview:
            return await MergeCoordinator(db).preview(branch_id)

        return await self._run(work, "preview_merge", read_only=True)

    async def merge_branch(self, branch_id: str, author: Optional[str] = None) -> MergeResult:
        """Fold a branch into its parent. The branch wins on every key it touched."""
        branch = await self.get_scenario(branch_id)

        async def work(db: AsyncSession) -> MergeResult:
            outcome = await MergeCoordinator(db).merge(branch_id)
            await CommitLogService(db, author=author).log_merge(
                outcome.branch.id,
                outcome.parent_id,
                entries=outcome.entries_applied + outcome.tombstones_applied,
                overwritten_keys=outcome.overwritten_keys,
            )
            return MergeResult(
                scenario=ScenarioResponse.model_validate(outcome.branch),
                parent_id=outcome.parent_id,
                entries_applied=outcome.entries_applied,
                tombstones_applied=outcome.tombstones_applied,
                parent_has_diverged=outcome.parent_has_diverged,
                overwritten_keys=outcome.overwritten_keys,
            )

        async with self.locks.hold(branch.id, branch.parent_id):
            return await self._run(work, "merge_branch")

    # ==========================================================================
    # History
    # ==========================================================================

    async def get_history(
        self,
        scenario_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CommitLog]:
        """Commit log records, newest first."""
        async def work(db: AsyncSession) -> List[CommitLog]:
            return await CommitLogService(db).get_history(
                scenario_id=scenario_id,
                entity_type=entity_type,
                entity_id=entity_id,
                limit=limit or settings.HISTORY_DEFAULT_LIMIT,
            )

        return await self._run(work, "get_history", read_only=True)
