"""
Scenario Comparator - Structured diff of two scenarios' effective state.

Architecture:
1. Load snapshots of both scenarios in one transaction (shared canonical rows)
2. Enumerate each entity type's effective set on both sides
3. Classify every id: added (only in B), removed (only in A), modified
4. Summarise and attach impact metrics

Scenarios need no common ancestry beyond the baseline to be compared, and
compare(S, S) is always empty.
"""

import logging
from typing import Any, List, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from capacity_planner.data.entities import (
    ENTITY_TYPE_ORDER,
    EntityType,
    entity_display_name,
    ordered_field_names,
)
from capacity_planner.scenarios.errors import InvalidBase
from capacity_planner.scenarios.impact import EffectiveSets, analyze_impact
from capacity_planner.scenarios.lineage import LineageResolver
from capacity_planner.scenarios.registry import ScenarioRegistry
from capacity_planner.scenarios.schemas import (
    ComparisonResult,
    ComparisonSummary,
    Difference,
    EntityTypeSummary,
    FieldChange,
    ScenarioResponse,
)

logger = logging.getLogger(__name__)

_MISSING = object()


def _lookup_in(sets: EffectiveSets):
    def lookup(entity_type: EntityType, entity_id):
        if not entity_id:
            return None
        return sets.get(entity_type, {}).get(entity_id)
    return lookup


def modified_fields(entity_type: EntityType, old: Mapping[str, Any], new: Mapping[str, Any]) -> List[str]:
    """Names of fields whose values differ, in declaration order."""
    return [
        name
        for name in ordered_field_names(entity_type, old, new)
        if old.get(name, _MISSING) != new.get(name, _MISSING)
    ]


def diff_effective_sets(before: EffectiveSets, after: EffectiveSets) -> List[Difference]:
    """
    Differences from `before` (scenario A) to `after` (scenario B).

    Ordered by entity type, then entity id.
    """
    lookup_before = _lookup_in(before)
    lookup_after = _lookup_in(after)
    differences: List[Difference] = []

    for entity_type in ENTITY_TYPE_ORDER:
        set_a = before.get(entity_type, {})
        set_b = after.get(entity_type, {})

        for entity_id in sorted(set(set_a) | set(set_b)):
            old = set_a.get(entity_id)
            new = set_b.get(entity_id)

            if old is None:
                differences.append(Difference(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    entity_name=entity_display_name(entity_type, entity_id, new, lookup_after),
                    kind="added",
                    new=new,
                ))
            elif new is None:
                differences.append(Difference(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    entity_name=entity_display_name(entity_type, entity_id, old, lookup_before),
                    kind="removed",
                    old=old,
                ))
            elif old != new:
                fields = modified_fields(entity_type, old, new)
                differences.append(Difference(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    entity_name=entity_display_name(entity_type, entity_id, new, lookup_after),
                    kind="modified",
                    modified_fields=fields,
                    changes=[FieldChange(field=name, old=old.get(name), new=new.get(name)) for name in fields],
                    old=old,
                    new=new,
                ))

    return differences


def summarize(differences: List[Difference]) -> ComparisonSummary:
    summary = ComparisonSummary(total=len(differences))
    for diff in differences:
        setattr(summary, diff.kind, getattr(summary, diff.kind) + 1)
        per_type = summary.by_entity_type.setdefault(diff.entity_type.value, EntityTypeSummary())
        setattr(per_type, diff.kind, getattr(per_type, diff.kind) + 1)
    return summary


class ScenarioComparator:
    """
    Service for comparing two scenarios.

    Usage:
        comparator = ScenarioComparator(db)
        result = await comparator.compare(baseline_id, branch_id)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = ScenarioRegistry(db)
        self.resolver = LineageResolver(db)

    async def compare(self, scenario_a_id: str, scenario_b_id: str) -> ComparisonResult:
        """
        Compare scenario A (before) with scenario B (after).

        Raises:
            NotFound: either scenario does not exist
        """
        scenario_a = await self.registry.get(scenario_a_id)
        scenario_b = await self.registry.get(scenario_b_id)

        snapshots = await self.resolver.snapshots([scenario_a.id, scenario_b.id])
        before = snapshots[scenario_a.id].effective_sets()
        after = snapshots[scenario_b.id].effective_sets()

        differences = diff_effective_sets(before, after)
        summary = summarize(differences)

        logger.debug(
            f"Compared {scenario_a.id} with {scenario_b.id}: "
            f"{summary.added} added, {summary.removed} removed, {summary.modified} modified"
        )

        return ComparisonResult(
            scenario_a=ScenarioResponse.model_validate(scenario_a),
            scenario_b=ScenarioResponse.model_validate(scenario_b),
            differences=differences,
            summary=summary,
            impact=analyze_impact(differences, before, after),
        )

    async def compare_to_parent(self, scenario_id: str) -> ComparisonResult:
        """Compare a scenario against its parent (parent is side A)."""
        scenario = await self.registry.get(scenario_id)
        if scenario.parent_id is None:
            raise InvalidBase("The baseline has no parent to compare against")
        return await self.compare(scenario.parent_id, scenario.id)
