"""
Impact Analyzer - Resource consequences of a scenario comparison.

Pure functions of the differences and both sides' effective sets. Nothing
here touches the database.

Metrics:
1. Utilization: total allocation of every person on a changed assignment
2. Timeline: latest scheduled end of every project whose dates changed
3. Capacity: known role demand per project against assigned supply
"""

from collections import defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from capacity_planner.config import settings
from capacity_planner.data.entities import EntityType
from capacity_planner.scenarios.schemas import (
    CapacityImpact,
    Difference,
    ImpactMetrics,
    PersonUtilizationChange,
    ProjectTimelineChange,
    RoleCapacityChange,
    TimelineImpact,
    UtilizationImpact,
)

EffectiveSets = Dict[EntityType, Dict[str, Dict[str, Any]]]

SCHEDULE_FIELDS = {"start_date", "end_date", "project_id"}


def analyze_impact(
    differences: List[Difference],
    before: EffectiveSets,
    after: EffectiveSets,
    threshold: Optional[float] = None,
) -> ImpactMetrics:
    """
    Compute impact metrics for a comparison.

    Args:
        differences: Differences from scenario A (before) to scenario B (after)
        before: Effective sets of scenario A
        after: Effective sets of scenario B
        threshold: Over-allocation threshold in percent (default from settings)

    Returns:
        ImpactMetrics with utilization, timeline and capacity sections
    """
    if threshold is None:
        threshold = settings.OVER_ALLOCATION_THRESHOLD

    return ImpactMetrics(
        utilization=utilization_impact(differences, before, after, threshold),
        timeline=timeline_impact(differences, before, after),
        capacity=capacity_impact(before, after),
    )


# =============================================================================
# UTILIZATION
# =============================================================================

def utilization_impact(
    differences: List[Difference],
    before: EffectiveSets,
    after: EffectiveSets,
    threshold: float,
) -> UtilizationImpact:
    """Allocation shift for every person on a changed assignment."""
    affected: Set[str] = set()
    for diff in _of_type(differences, EntityType.ASSIGNMENT):
        for payload in (diff.old, diff.new):
            if payload and payload.get("person_id"):
                affected.add(payload["person_id"])

    totals_before = _allocation_by_person(before.get(EntityType.ASSIGNMENT, {}))
    totals_after = _allocation_by_person(after.get(EntityType.ASSIGNMENT, {}))

    impact = UtilizationImpact(threshold=threshold)
    net_change = 0.0

    for person_id in sorted(affected):
        allocation_before = round(totals_before.get(person_id, 0.0), 2)
        allocation_after = round(totals_after.get(person_id, 0.0), 2)
        change = round(allocation_after - allocation_before, 2)
        net_change += change

        person = _first_present(person_id, after.get(EntityType.PERSON, {}), before.get(EntityType.PERSON, {}))
        row = PersonUtilizationChange(
            person_id=person_id,
            person_name=(person or {}).get("name") or person_id,
            allocation_before=allocation_before,
            allocation_after=allocation_after,
            change=change,
        )
        impact.people.append(row)

        if allocation_before <= threshold < allocation_after:
            impact.newly_over_allocated.append(row)
        elif allocation_after <= threshold < allocation_before:
            impact.resolved_over_allocated.append(row)

    impact.team_utilization_change = round(net_change, 2)
    return impact


def _allocation_by_person(assignments: Dict[str, Dict[str, Any]]) -> Dict[str, float]:
    totals: Dict[str, float] = defaultdict(float)
    for assignment in assignments.values():
        person_id = assignment.get("person_id")
        if person_id:
            totals[person_id] += float(assignment.get("allocation") or 0)
    return totals


# =============================================================================
# TIMELINE
# =============================================================================

def timeline_impact(
    differences: List[Difference],
    before: EffectiveSets,
    after: EffectiveSets,
) -> TimelineImpact:
    """Latest end date shift for projects whose assignment or phase dates changed."""
    affected: Set[str] = set()
    for diff in differences:
        if diff.entity_type not in (EntityType.ASSIGNMENT, EntityType.PROJECT_PHASE):
            continue
        if diff.kind == "modified" and not SCHEDULE_FIELDS.intersection(diff.modified_fields):
            continue
        for payload in (diff.old, diff.new):
            if payload and payload.get("project_id"):
                affected.add(payload["project_id"])

    ends_before = _latest_ends(before)
    ends_after = _latest_ends(after)

    impact = TimelineImpact(projects_affected=len(affected))
    day_changes: List[int] = []

    for project_id in sorted(affected):
        project = _first_present(project_id, after.get(EntityType.PROJECT, {}), before.get(EntityType.PROJECT, {}))
        end_before = ends_before.get(project_id)
        end_after = ends_after.get(project_id)

        change_days = None
        if end_before and end_after:
            change_days = (end_after - end_before).days
            day_changes.append(change_days)

        aspiration = _as_date((after.get(EntityType.PROJECT, {}).get(project_id) or {}).get("aspiration_finish"))
        at_risk = bool(end_after and aspiration and end_after > aspiration)

        impact.projects.append(ProjectTimelineChange(
            project_id=project_id,
            project_name=(project or {}).get("name") or project_id,
            end_before=end_before.isoformat() if end_before else None,
            end_after=end_after.isoformat() if end_after else None,
            change_days=change_days,
            aspiration_finish=aspiration.isoformat() if aspiration else None,
            at_risk=at_risk,
        ))

    impact.projects_at_risk = sum(1 for p in impact.projects if p.at_risk)
    if day_changes:
        impact.average_timeline_change = round(sum(day_changes) / len(day_changes), 1)
    return impact


def _latest_ends(sets: EffectiveSets) -> Dict[str, date]:
    """Latest end date per project over its assignments and phases."""
    latest: Dict[str, date] = {}
    for entity_type in (EntityType.ASSIGNMENT, EntityType.PROJECT_PHASE):
        for payload in sets.get(entity_type, {}).values():
            project_id = payload.get("project_id")
            end = _as_date(payload.get("end_date"))
            if project_id and end and (project_id not in latest or end > latest[project_id]):
                latest[project_id] = end
    return latest


# =============================================================================
# CAPACITY
# =============================================================================

def capacity_impact(before: EffectiveSets, after: EffectiveSets) -> CapacityImpact:
    """Roles whose known demand becomes uncovered, or covered, between the two sides."""
    demand_before = _role_demands(before.get(EntityType.PROJECT, {}))
    demand_after = _role_demands(after.get(EntityType.PROJECT, {}))
    supply_before = _role_supply(before.get(EntityType.ASSIGNMENT, {}))
    supply_after = _role_supply(after.get(EntityType.ASSIGNMENT, {}))

    impact = CapacityImpact()

    for key in sorted(set(demand_before) | set(demand_after)):
        project_id, role_id = key
        short_before = key in demand_before and supply_before.get(key, 0.0) < demand_before[key]
        short_after = key in demand_after and supply_after.get(key, 0.0) < demand_after[key]
        if short_before == short_after:
            continue

        demand = demand_after.get(key, demand_before.get(key, 0.0))
        project = _first_present(project_id, after.get(EntityType.PROJECT, {}), before.get(EntityType.PROJECT, {}))
        row = RoleCapacityChange(
            project_id=project_id,
            project_name=(project or {}).get("name") or project_id,
            role_id=role_id,
            demand=demand,
            supply_before=round(supply_before.get(key, 0.0), 2),
            supply_after=round(supply_after.get(key, 0.0), 2),
            shortfall=round(max(0.0, demand_after.get(key, 0.0) - supply_after.get(key, 0.0)), 2),
        )
        if short_after:
            impact.newly_short_roles.append(row)
        else:
            impact.resolved_roles.append(row)

    impact.additional_resource_needs = round(sum(r.shortfall for r in impact.newly_short_roles), 2)
    return impact


def _role_demands(projects: Dict[str, Dict[str, Any]]) -> Dict[Tuple[str, str], float]:
    demands: Dict[Tuple[str, str], float] = {}
    for project_id, project in projects.items():
        if not project.get("include_in_demand", True):
            continue
        for role_id, amount in (project.get("role_demands") or {}).items():
            if amount and float(amount) > 0:
                demands[(project_id, role_id)] = float(amount)
    return demands


def _role_supply(assignments: Dict[str, Dict[str, Any]]) -> Dict[Tuple[str, str], float]:
    supply: Dict[Tuple[str, str], float] = defaultdict(float)
    for assignment in assignments.values():
        key = (assignment.get("project_id"), assignment.get("role_id"))
        if all(key):
            supply[key] += float(assignment.get("allocation") or 0)
    return supply


# =============================================================================
# HELPERS
# =============================================================================

def _of_type(differences: Iterable[Difference], entity_type: EntityType) -> List[Difference]:
    return [d for d in differences if d.entity_type == entity_type]


def _first_present(entity_id: str, *sets: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for entities in sets:
        if entity_id in entities:
            return entities[entity_id]
    return None


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
