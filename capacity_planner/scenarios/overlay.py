"""
Scenario Overlay Store - Scenario-local versions of planning entities.

Key principle: NEVER modify canonical data. A scenario only records what it
changes: a present entry carries the entity's full record, a tombstone marks
it deleted. Everything else falls through to the parent scenario.

Architecture:
1. Lock the scenario row and check it is still active
2. Patch the incoming fields over the entity's current effective value
3. Validate the result against the entity payload model
4. Upsert the single entry for (scenario, entity_type, entity_id)
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from capacity_planner.data.entities import EntityType, format_validation_error, get_entity_spec
from capacity_planner.models.base import utcnow
from capacity_planner.scenarios.errors import InvalidKind, InvalidPayload, ScenarioImmutable
from capacity_planner.scenarios.models import EntryState, OverlayEntry, Scenario
from capacity_planner.scenarios.registry import ScenarioRegistry

logger = logging.getLogger(__name__)


class LookupState(str, enum.Enum):
    """Outcome of looking up a key in one scenario's overlay."""
    PRESENT = "present"
    TOMBSTONE = "tombstone"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OverlayLookup:
    """
    What one scenario's overlay says about a key.

    NOT_FOUND means "fall through to the parent", TOMBSTONE means "deleted
    here", PRESENT carries the full payload.
    """
    state: LookupState
    payload: Optional[Dict[str, Any]] = None

    @classmethod
    def present(cls, payload: Dict[str, Any]) -> "OverlayLookup":
        return cls(LookupState.PRESENT, payload)

    @classmethod
    def tombstone(cls) -> "OverlayLookup":
        return cls(LookupState.TOMBSTONE)

    @classmethod
    def not_found(cls) -> "OverlayLookup":
        return cls(LookupState.NOT_FOUND)

    @classmethod
    def from_entry(cls, entry: Optional[OverlayEntry]) -> "OverlayLookup":
        if entry is None:
            return cls.not_found()
        if entry.is_tombstone:
            return cls.tombstone()
        return cls.present(dict(entry.payload or {}))


def coerce_entity_type(entity_type: "EntityType | str") -> EntityType:
    """
    Raises:
        InvalidKind: not a versioned entity type
    """
    try:
        return EntityType(entity_type)
    except ValueError:
        raise InvalidKind(f"Unknown entity type: {entity_type}")


def validate_payload(
    entity_type: EntityType,
    payload: Mapping[str, Any],
    current: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the full record to store for a put.

    Fields in `payload` are patched over `current` (the entity's effective
    value before the write, if any) and the result is validated.

    Raises:
        InvalidPayload: the merged record fails validation
    """
    entity_type = coerce_entity_type(entity_type)
    if not isinstance(payload, Mapping):
        raise InvalidPayload("Payload must be an object")

    merged: Dict[str, Any] = dict(current or {})
    merged.update(payload)

    try:
        return get_entity_spec(entity_type).normalize(merged)
    except ValidationError as exc:
        raise InvalidPayload(f"Invalid {entity_type.value} payload: {format_validation_error(exc)}")


class OverlayStore:
    """
    Service for reading and writing overlay entries.

    Writes flush but never commit: the caller's unit of work decides.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = ScenarioRegistry(db)

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def ensure_writable(self, scenario_id: str) -> Scenario:
        """
        Lock the scenario row and check it accepts writes.

        Raises:
            NotFound: unknown scenario
            ScenarioImmutable: scenario is archived or merged
        """
        scenario = await self.registry.get(scenario_id, for_update=True)
        if not scenario.is_active:
            raise ScenarioImmutable(f"Scenario {scenario.id} is {scenario.status}")
        return scenario

    async def put(
        self,
        scenario_id: str,
        entity_type: EntityType,
        entity_id: str,
        payload: Mapping[str, Any],
        current: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[OverlayEntry, bool]:
        """
        Record an addition or modification of an entity in a scenario.

        Args:
            scenario_id: Scenario to write into
            entity_type: Type of the entity
            entity_id: Entity key
            payload: Fields to set (may be partial when `current` is given)
            current: Effective value of the entity before this write

        Returns:
            Tuple of (entry, created) where created is True for a new entry row
        """
        await self.ensure_writable(scenario_id)
        record = validate_payload(entity_type, payload, current)
        return await self.write_entry(scenario_id, entity_type, entity_id, EntryState.PRESENT, record)

    async def remove(
        self,
        scenario_id: str,
        entity_type: EntityType,
        entity_id: str,
    ) -> Tuple[OverlayEntry, bool]:
        """Record a deletion of an entity in a scenario as a tombstone."""
        await self.ensure_writable(scenario_id)
        return await self.write_entry(scenario_id, entity_type, entity_id, EntryState.TOMBSTONE, None)

    async def write_entry(
        self,
        scenario_id: str,
        entity_type: "EntityType | str",
        entity_id: str,
        state: "EntryState | str",
        payload: Optional[Dict[str, Any]],
    ) -> Tuple[OverlayEntry, bool]:
        """
        Upsert the single entry for a key without lifecycle checks.

        Used by put/remove after their checks, and by merges writing into
        the parent scenario.
        """
        type_value = coerce_entity_type(entity_type).value
        state_value = EntryState(state).value
        stored = dict(payload) if state_value == EntryState.PRESENT.value else None

        entry = await self._get_entry(scenario_id, type_value, entity_id)
        created = entry is None
        if created:
            entry = OverlayEntry(
                scenario_id=scenario_id,
                entity_type=type_value,
                entity_id=entity_id,
                state=state_value,
                payload=stored,
            )
            self.db.add(entry)
        else:
            entry.state = state_value
            entry.payload = stored
            entry.updated_at = utcnow()

        await self.db.flush()
        logger.debug(f"Wrote {state_value} entry {scenario_id}:{type_value}/{entity_id}")
        return entry, created

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def _get_entry(self, scenario_id: str, entity_type: str, entity_id: str) -> Optional[OverlayEntry]:
        result = await self.db.execute(
            select(OverlayEntry).where(
                and_(
                    OverlayEntry.scenario_id == scenario_id,
                    OverlayEntry.entity_type == entity_type,
                    OverlayEntry.entity_id == entity_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def lookup(self, scenario_id: str, entity_type: "EntityType | str", entity_id: str) -> OverlayLookup:
        """This scenario's own opinion on a key, ignoring ancestors."""
        entry = await self._get_entry(scenario_id, coerce_entity_type(entity_type).value, entity_id)
        return OverlayLookup.from_entry(entry)

    async def entries_for(self, scenario_id: str, entity_type: Optional[str] = None) -> List[OverlayEntry]:
        """All entries of one scenario, ordered by key."""
        query = select(OverlayEntry).where(OverlayEntry.scenario_id == scenario_id)
        if entity_type:
            query = query.where(OverlayEntry.entity_type == coerce_entity_type(entity_type).value)
        query = query.order_by(OverlayEntry.entity_type, OverlayEntry.entity_id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def entries_for_chain(
        self,
        scenario_ids: Iterable[str],
        entity_types: Optional[Iterable[str]] = None,
        entity_id: Optional[str] = None,
    ) -> List[OverlayEntry]:
        """Entries of several scenarios in one query, optionally narrowed to types or a key."""
        ids = list(scenario_ids)
        if not ids:
            return []

        query = select(OverlayEntry).where(OverlayEntry.scenario_id.in_(ids))
        if entity_types is not None:
            query = query.where(OverlayEntry.entity_type.in_([coerce_entity_type(t).value for t in entity_types]))
        if entity_id:
            query = query.where(OverlayEntry.entity_id == entity_id)

        result = await self.db.execute(query)
        return list(result.scalars().all())
