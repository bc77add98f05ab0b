"""Pydantic schemas for scenario versioning."""
from pydantic import BaseModel, Field, computed_field
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime

from capacity_planner.data.entities import EntityType
from capacity_planner.scenarios.models import ScenarioKind, ScenarioStatus


# ============================================================================
# SCENARIO SCHEMAS
# ============================================================================

class ScenarioCreate(BaseModel):
    """Schema for creating a branch or sandbox."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    base_scenario_id: Optional[str] = None
    kind: ScenarioKind = ScenarioKind.BRANCH
    created_by: Optional[str] = None


class ScenarioUpdate(BaseModel):
    """Schema for updating scenario metadata."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class ScenarioResponse(BaseModel):
    """Schema for scenario response."""
    id: str
    name: str
    description: Optional[str]
    kind: ScenarioKind
    status: ScenarioStatus
    parent_id: Optional[str]
    parent_name: Optional[str] = None
    branch_point: Optional[datetime]
    merged_at: Optional[datetime]
    created_by: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class CheckoutResponse(BaseModel):
    """Handle for the scenario a client works in. The server keeps no checkout state."""
    scenario_id: str
    name: str
    kind: ScenarioKind
    status: ScenarioStatus
    writable: bool
    lineage: List[str]


# ============================================================================
# OVERLAY SCHEMAS
# ============================================================================

class EntityWrite(BaseModel):
    """Schema for writing an entity into a scenario. Fields may be partial for existing entities."""
    payload: Dict[str, Any]
    author: Optional[str] = None


class OverlayEntryResponse(BaseModel):
    """Schema for overlay entry response."""
    id: str
    scenario_id: str
    entity_type: EntityType
    entity_id: str
    state: Literal["present", "tombstone"]
    payload: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ============================================================================
# COMPARISON SCHEMAS
# ============================================================================

DifferenceKind = Literal["added", "removed", "modified"]


class FieldChange(BaseModel):
    """One changed field of a modified entity."""
    field: str
    old: Any = None
    new: Any = None


class Difference(BaseModel):
    """One entity that differs between two scenarios."""
    entity_type: EntityType
    entity_id: str
    entity_name: str
    kind: DifferenceKind
    modified_fields: List[str] = []
    changes: List[FieldChange] = []
    old: Optional[Dict[str, Any]] = None  # payload in scenario A (None when added)
    new: Optional[Dict[str, Any]] = None  # payload in scenario B (None when removed)


class EntityTypeSummary(BaseModel):
    added: int = 0
    removed: int = 0
    modified: int = 0


class ComparisonSummary(BaseModel):
    """Counts of differences by kind."""
    added: int = 0
    removed: int = 0
    modified: int = 0
    total: int = 0
    by_entity_type: Dict[str, EntityTypeSummary] = {}


class PersonUtilizationChange(BaseModel):
    person_id: str
    person_name: str
    allocation_before: float
    allocation_after: float
    change: float  # percentage points


class UtilizationImpact(BaseModel):
    """How the diff moves people's total allocation."""
    threshold: float
    team_utilization_change: float = 0.0  # percentage points, summed over affected people
    people: List[PersonUtilizationChange] = []
    newly_over_allocated: List[PersonUtilizationChange] = []
    resolved_over_allocated: List[PersonUtilizationChange] = []

    @computed_field
    @property
    def over_allocated_people(self) -> int:
        return len(self.newly_over_allocated)


class ProjectTimelineChange(BaseModel):
    project_id: str
    project_name: str
    end_before: Optional[str] = None  # ISO date of the latest assignment/phase end
    end_after: Optional[str] = None
    change_days: Optional[int] = None
    aspiration_finish: Optional[str] = None
    at_risk: bool = False


class TimelineImpact(BaseModel):
    """Projects whose schedules the diff touches."""
    projects_affected: int = 0
    projects_at_risk: int = 0
    average_timeline_change: Optional[float] = None  # days
    projects: List[ProjectTimelineChange] = []


class RoleCapacityChange(BaseModel):
    project_id: str
    project_name: str
    role_id: str
    demand: float
    supply_before: float
    supply_after: float
    shortfall: float  # demand not covered in scenario B (0 when satisfied)


class CapacityImpact(BaseModel):
    """Roles whose known demand the diff leaves uncovered, or newly covers."""
    newly_short_roles: List[RoleCapacityChange] = []
    resolved_roles: List[RoleCapacityChange] = []
    additional_resource_needs: float = 0.0


class ImpactMetrics(BaseModel):
    utilization: UtilizationImpact
    timeline: TimelineImpact
    capacity: CapacityImpact


class ComparisonResult(BaseModel):
    """Structured diff of two scenarios' effective state."""
    scenario_a: ScenarioResponse
    scenario_b: ScenarioResponse
    differences: List[Difference] = []
    summary: ComparisonSummary
    impact: ImpactMetrics

    def of_kind(self, kind: DifferenceKind) -> List[Difference]:
        return [d for d in self.differences if d.kind == kind]

    @property
    def is_empty(self) -> bool:
        return not self.differences


# ============================================================================
# MERGE SCHEMAS
# ============================================================================

class MergeConflict(BaseModel):
    """A key the parent changed after the branch was forked, which the merge would overwrite."""
    entity_type: EntityType
    entity_id: str
    parent_state: str
    parent_payload: Optional[Dict[str, Any]]
    branch_state: str
    branch_payload: Optional[Dict[str, Any]]
    parent_updated_at: Optional[datetime] = None


class MergeRequest(BaseModel):
    author: Optional[str] = None


class MergePreview(BaseModel):
    """What merging a branch would write into its parent."""
    branch_id: str
    parent_id: Optional[str]
    mergeable: bool
    reason: Optional[str] = None
    entries: int = 0
    keys: List[str] = []  # "entity_type/entity_id"
    parent_has_diverged: bool = False
    conflicts: List[MergeConflict] = []


class MergeResult(BaseModel):
    """Outcome of a completed merge."""
    scenario: ScenarioResponse
    parent_id: str
    entries_applied: int
    tombstones_applied: int
    parent_has_diverged: bool = False
    overwritten_keys: List[str] = []


# ============================================================================
# HISTORY SCHEMAS
# ============================================================================

class CommitLogResponse(BaseModel):
    """Schema for commit history entries."""
    id: str
    timestamp: datetime
    message: str
    author: Optional[str]
    scenario_id: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    action: str
    extra_data: Optional[Dict[str, Any]] = None

    model_config = {"from_attributes": True}
