"""
Scenario Registry - Lifecycle and lineage of scenarios.

Scenarios form a tree rooted at the single baseline. The registry owns the
rows in `scenarios`; overlay content lives in the overlay store.

Architecture:
1. Load the scenario rows once into an id-keyed arena
2. Walk parent links through the arena to materialise a lineage chain
3. Validate lifecycle transitions (create, archive, delete) against the chain
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from capacity_planner.config import settings
from capacity_planner.models.base import utcnow
from capacity_planner.scenarios.errors import (
    AlreadyTerminal,
    HasChildren,
    InvalidBase,
    InvalidKind,
    NotFound,
)
from capacity_planner.scenarios.models import (
    OverlayEntry,
    Scenario,
    ScenarioKind,
    ScenarioStatus,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScenarioNode:
    """Lineage-relevant columns of one scenario row."""
    id: str
    parent_id: Optional[str]
    kind: str
    status: str


def materialize_chain(
    arena: Dict[str, ScenarioNode],
    scenario_id: str,
    max_depth: Optional[int] = None,
) -> List[str]:
    """
    Ordered lineage of a scenario: itself first, the baseline last.

    Raises:
        NotFound: scenario_id is not in the arena
        InvalidBase: the parent links are broken, cyclic or deeper than max_depth
    """
    if scenario_id not in arena:
        raise NotFound(f"Scenario {scenario_id} not found")

    limit = max_depth or settings.MAX_LINEAGE_DEPTH
    chain: List[str] = []
    seen = set()
    current: Optional[str] = scenario_id

    while current is not None:
        if current in seen:
            raise InvalidBase(f"Lineage of {scenario_id} contains a cycle at {current}")
        if len(chain) >= limit:
            logger.warning(f"Lineage walk for {scenario_id} stopped at {limit} levels")
            raise InvalidBase(f"Lineage of {scenario_id} exceeds {limit} levels")
        node = arena.get(current)
        if node is None:
            raise InvalidBase(f"Lineage of {scenario_id} references missing scenario {current}")
        chain.append(node.id)
        seen.add(node.id)
        current = node.parent_id

    root = arena[chain[-1]]
    if root.kind != ScenarioKind.BASELINE.value:
        raise InvalidBase(f"Lineage of {scenario_id} does not end at the baseline")

    if len(chain) > settings.LINEAGE_DEPTH_WARNING:
        logger.warning(f"Scenario {scenario_id} has a deep lineage ({len(chain)} levels)")

    return chain


class ScenarioRegistry:
    """
    Service for creating, listing and retiring scenarios.

    Nothing here commits: callers run the registry inside a unit of work.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==========================================================================
    # Lookup
    # ==========================================================================

    async def get(self, scenario_id: str, for_update: bool = False) -> Scenario:
        """Fetch one scenario, optionally locking its row until commit."""
        query = select(Scenario).where(Scenario.id == scenario_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        scenario = result.scalar_one_or_none()
        if scenario is None:
            raise NotFound(f"Scenario {scenario_id} not found")
        return scenario

    async def get_baseline(self) -> Optional[Scenario]:
        result = await self.db.execute(
            select(Scenario).where(Scenario.kind == ScenarioKind.BASELINE.value)
        )
        return result.scalars().first()

    async def list_scenarios(
        self,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> List[Scenario]:
        """All scenarios, oldest first, optionally filtered."""
        query = select(Scenario)
        if kind:
            query = query.where(Scenario.kind == kind)
        if status:
            query = query.where(Scenario.status == status)
        if parent_id:
            query = query.where(Scenario.parent_id == parent_id)
        query = query.order_by(Scenario.created_at, Scenario.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def load_arena(self) -> Dict[str, ScenarioNode]:
        """Every scenario's lineage columns, keyed by id, in one query."""
        result = await self.db.execute(
            select(Scenario.id, Scenario.parent_id, Scenario.kind, Scenario.status)
        )
        return {
            row.id: ScenarioNode(id=row.id, parent_id=row.parent_id, kind=row.kind, status=row.status)
            for row in result.all()
        }

    async def chain(self, scenario_id: str) -> List[str]:
        """Lineage chain of a scenario, nearest first."""
        arena = await self.load_arena()
        return materialize_chain(arena, scenario_id)

    async def count_children(self, scenario_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Scenario).where(Scenario.parent_id == scenario_id)
        )
        return result.scalar_one()

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def create_baseline(self, name: Optional[str] = None, created_by: Optional[str] = None) -> Optional[Scenario]:
        """
        Insert the baseline row.

        Returns:
            The new baseline, or None when another writer inserted one first
            (the single-baseline index rejected this insert)
        """
        baseline = Scenario(
            name=name or settings.BASELINE_NAME,
            description="Canonical planning data",
            kind=ScenarioKind.BASELINE.value,
            status=ScenarioStatus.ACTIVE.value,
            parent_id=None,
            branch_point=None,
            created_by=created_by,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(baseline)
                await self.db.flush()
        except IntegrityError:
            logger.info("Baseline scenario was created concurrently")
            return None

        await self.db.refresh(baseline)
        logger.info(f"Created baseline scenario {baseline.id}")
        return baseline

    async def create(
        self,
        kind: str,
        name: str,
        base_scenario_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Scenario:
        """
        Create a branch or sandbox on top of an active base scenario.

        Raises:
            InvalidKind: unknown kind, or a second baseline
            InvalidBase: base missing from the request, or not active
            NotFound: base scenario does not exist
        """
        try:
            kind_value = ScenarioKind(kind).value
        except ValueError:
            raise InvalidKind(f"Unknown scenario kind: {kind}")

        if kind_value == ScenarioKind.BASELINE.value:
            if await self.get_baseline() is not None:
                raise InvalidKind("A baseline scenario already exists")
            baseline = await self.create_baseline(name=name, created_by=created_by)
            if baseline is None:
                raise InvalidKind("A baseline scenario already exists")
            return baseline

        if not base_scenario_id:
            raise InvalidBase("base_scenario_id is required for branches and sandboxes")

        base = await self.get(base_scenario_id)
        if base.status != ScenarioStatus.ACTIVE.value:
            raise InvalidBase(f"Base scenario {base.id} is {base.status}")

        # The new scenario's lineage must stay within the depth bound
        base_chain = await self.chain(base.id)
        if len(base_chain) + 1 > settings.MAX_LINEAGE_DEPTH:
            raise InvalidBase(f"Lineage would exceed {settings.MAX_LINEAGE_DEPTH} levels")

        scenario = Scenario(
            name=name,
            description=description,
            kind=kind_value,
            status=ScenarioStatus.ACTIVE.value,
            parent_id=base.id,
            branch_point=utcnow(),
            created_by=created_by,
        )
        self.db.add(scenario)
        await self.db.flush()
        await self.db.refresh(scenario)

        logger.info(f"Created {kind_value} scenario {scenario.id} from {base.id}")
        return scenario

    async def update(
        self,
        scenario_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Scenario:
        """Rename or re-describe a scenario. Allowed in any status."""
        scenario = await self.get(scenario_id, for_update=True)
        if name is not None:
            scenario.name = name
        if description is not None:
            scenario.description = description
        await self.db.flush()
        return scenario

    async def archive(self, scenario_id: str) -> Scenario:
        """
        Move a scenario to archived.

        Raises:
            InvalidKind: the baseline cannot be archived
            AlreadyTerminal: already archived or merged
        """
        scenario = await self.get(scenario_id, for_update=True)
        if scenario.kind == ScenarioKind.BASELINE.value:
            raise InvalidKind("The baseline cannot be archived")
        if scenario.status in TERMINAL_STATUSES:
            raise AlreadyTerminal(f"Scenario {scenario.id} is already {scenario.status}")

        scenario.status = ScenarioStatus.ARCHIVED.value
        await self.db.flush()

        logger.info(f"Archived scenario {scenario.id}")
        return scenario

    async def delete(self, scenario_id: str) -> Scenario:
        """
        Delete a scenario and its overlay entries.

        Raises:
            InvalidKind: the baseline cannot be deleted
            HasChildren: other scenarios still branch from it
        """
        scenario = await self.get(scenario_id, for_update=True)
        if scenario.kind == ScenarioKind.BASELINE.value:
            raise InvalidKind("The baseline cannot be deleted")

        children = await self.count_children(scenario.id)
        if children:
            raise HasChildren(f"Scenario {scenario.id} has {children} child scenario(s)")

        await self.db.execute(delete(OverlayEntry).where(OverlayEntry.scenario_id == scenario.id))
        await self.db.execute(delete(Scenario).where(Scenario.id == scenario.id))

        logger.info(f"Deleted scenario {scenario.id}")
        return scenario
