"""
Lineage Resolver - Effective value of an entity as seen from a scenario.

Resolution walks the scenario's lineage chain, nearest first:
- the first present entry wins
- the first tombstone means "absent", shadowing every ancestor
- past the baseline, the canonical row (or nothing) is the answer

Point lookups and whole-type enumeration go through the same resolution
function, so they can never disagree.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from capacity_planner.data.entities import ENTITY_TYPE_ORDER, EntityType, get_entity_spec
from capacity_planner.scenarios.overlay import LookupState, OverlayLookup, OverlayStore, coerce_entity_type
from capacity_planner.scenarios.registry import ScenarioRegistry, materialize_chain

EntryIndex = Dict[Tuple[str, str, str], OverlayLookup]  # (scenario_id, entity_type, entity_id)
CanonicalIndex = Dict[str, Dict[str, Dict[str, Any]]]  # entity_type -> entity_id -> payload


def resolve_in_chain(
    chain: List[str],
    entries: EntryIndex,
    canonical: CanonicalIndex,
    entity_type: str,
    entity_id: str,
) -> Optional[Dict[str, Any]]:
    """Resolve one key through a materialised chain. None means absent."""
    for scenario_id in chain:
        hit = entries.get((scenario_id, entity_type, entity_id))
        if hit is None or hit.state == LookupState.NOT_FOUND:
            continue
        if hit.state == LookupState.TOMBSTONE:
            return None
        return dict(hit.payload or {})

    row = canonical.get(entity_type, {}).get(entity_id)
    return dict(row) if row is not None else None


@dataclass
class LineageSnapshot:
    """
    Everything needed to resolve entities for one scenario, loaded up front.

    Built inside a single transaction, so every answer it gives reflects the
    same committed state.
    """
    scenario_id: str
    chain: List[str]
    entries: EntryIndex = field(default_factory=dict)
    canonical: CanonicalIndex = field(default_factory=dict)

    def resolve(self, entity_type: "EntityType | str", entity_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if entity_id is None:
            return None
        return resolve_in_chain(self.chain, self.entries, self.canonical, coerce_entity_type(entity_type).value, entity_id)

    def candidate_ids(self, entity_type: "EntityType | str") -> Set[str]:
        """Every id that might resolve for a type: canonical ids plus overlay keys along the chain."""
        type_value = coerce_entity_type(entity_type).value
        chain = set(self.chain)
        ids = set(self.canonical.get(type_value, {}))
        ids.update(
            entity_id
            for (scenario_id, etype, entity_id) in self.entries
            if etype == type_value and scenario_id in chain
        )
        return ids

    def effective_set(self, entity_type: "EntityType | str") -> Dict[str, Dict[str, Any]]:
        """Every entity of a type that resolves to present, keyed by id in sorted order."""
        result: Dict[str, Dict[str, Any]] = {}
        for entity_id in sorted(self.candidate_ids(entity_type)):
            payload = self.resolve(entity_type, entity_id)
            if payload is not None:
                result[entity_id] = payload
        return result

    def effective_sets(self, entity_types: Optional[Iterable[EntityType]] = None) -> Dict[EntityType, Dict[str, Dict[str, Any]]]:
        types = list(entity_types) if entity_types is not None else ENTITY_TYPE_ORDER
        return {coerce_entity_type(t): self.effective_set(t) for t in types}


class LineageResolver:
    """
    Service for computing effective entity values.

    Usage:
        resolver = LineageResolver(db)
        payload = await resolver.resolve(scenario_id, EntityType.PERSON, "person_1")
        people = await resolver.effective_set(scenario_id, EntityType.PERSON)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = ScenarioRegistry(db)
        self.overlay = OverlayStore(db)

    async def resolve(
        self,
        scenario_id: str,
        entity_type: "EntityType | str",
        entity_id: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Effective value of one entity in a scenario.

        Returns:
            The full payload, or None when the entity is absent

        Raises:
            NotFound: unknown scenario
        """
        type_value = coerce_entity_type(entity_type).value
        chain = await self.registry.chain(scenario_id)

        entries = await self.overlay.entries_for_chain(chain, entity_types=[type_value], entity_id=entity_id)
        snapshot = LineageSnapshot(scenario_id=scenario_id, chain=chain)
        snapshot.entries = self._index_entries(entries)

        canonical_row = await self._canonical_row(type_value, entity_id)
        snapshot.canonical = {type_value: {entity_id: canonical_row}} if canonical_row is not None else {}

        return snapshot.resolve(type_value, entity_id)

    async def effective_set(self, scenario_id: str, entity_type: "EntityType | str") -> Dict[str, Dict[str, Any]]:
        """Every present entity of a type in a scenario, keyed by id."""
        snapshot = await self.snapshot(scenario_id, [coerce_entity_type(entity_type)])
        return snapshot.effective_set(entity_type)

    async def snapshot(
        self,
        scenario_id: str,
        entity_types: Optional[Iterable[EntityType]] = None,
    ) -> LineageSnapshot:
        snapshots = await self.snapshots([scenario_id], entity_types)
        return snapshots[scenario_id]

    async def snapshots(
        self,
        scenario_ids: Iterable[str],
        entity_types: Optional[Iterable[EntityType]] = None,
    ) -> Dict[str, LineageSnapshot]:
        """
        Snapshots for several scenarios sharing one load.

        The arena, the overlay entries of every involved chain and the
        canonical rows are each read once.
        """
        types = [coerce_entity_type(t) for t in (entity_types if entity_types is not None else ENTITY_TYPE_ORDER)]
        ids = list(dict.fromkeys(scenario_ids))

        arena = await self.registry.load_arena()
        chains = {sid: materialize_chain(arena, sid) for sid in ids}

        involved: List[str] = []
        for chain in chains.values():
            for sid in chain:
                if sid not in involved:
                    involved.append(sid)

        loaded = await self.overlay.entries_for_chain(involved, entity_types=[t.value for t in types])
        entries = self._index_entries(loaded)

        canonical: CanonicalIndex = {}
        for entity_type in types:
            canonical[entity_type.value] = await self._canonical_rows(entity_type)

        return {
            sid: LineageSnapshot(scenario_id=sid, chain=chains[sid], entries=entries, canonical=canonical)
            for sid in ids
        }

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @staticmethod
    def _index_entries(entries) -> EntryIndex:
        return {
            (entry.scenario_id, entry.entity_type, entry.entity_id): OverlayLookup.from_entry(entry)
            for entry in entries
        }

    async def _canonical_row(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        spec = get_entity_spec(entity_type)
        row = await self.db.get(spec.canonical_model, entity_id)
        return spec.from_row(row) if row is not None else None

    async def _canonical_rows(self, entity_type: EntityType) -> Dict[str, Dict[str, Any]]:
        spec = get_entity_spec(entity_type)
        result = await self.db.execute(select(spec.canonical_model))
        return {row.id: spec.from_row(row) for row in result.scalars().all()}
