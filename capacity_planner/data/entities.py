"""
Entity catalog for versioned planning records.

Every entity type the scenario engine versions is declared here once:
- its payload model (field declaration order drives diff field ordering)
- the canonical table it falls back to
- how it is named in comparison output
"""
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from capacity_planner.data.models import Project, Person, ProjectAssignment, ProjectPhaseTimeline


class EntityType(str, Enum):
    """Entity types carried by scenario overlays."""
    PROJECT = "project"
    PERSON = "person"
    ASSIGNMENT = "assignment"
    PROJECT_PHASE = "project_phase"


# Comparison output is grouped in this order
ENTITY_TYPE_ORDER: List[EntityType] = [
    EntityType.PROJECT,
    EntityType.PERSON,
    EntityType.ASSIGNMENT,
    EntityType.PROJECT_PHASE,
]


# =============================================================================
# PAYLOAD MODELS
# =============================================================================

class EntityPayload(BaseModel):
    """Base payload: unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid")


class ProjectPayload(EntityPayload):
    name: str = Field(..., min_length=1, max_length=255)
    project_type_id: Optional[str] = None
    location_id: Optional[str] = None
    priority: int = 5
    description: Optional[str] = None
    include_in_demand: bool = True
    aspiration_start: Optional[date] = None
    aspiration_finish: Optional[date] = None
    owner_id: Optional[str] = None
    current_phase_id: Optional[str] = None
    role_demands: Dict[str, float] = Field(default_factory=dict)

    @field_validator("role_demands", mode="before")
    @classmethod
    def _empty_demands(cls, value: Any) -> Any:
        return value or {}


class PersonPayload(EntityPayload):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    primary_role_id: Optional[str] = None
    worker_type: str = Field("FTE", pattern="^(FTE|Contractor|Consultant)$")
    supervisor_id: Optional[str] = None
    default_availability_percentage: float = Field(100, ge=0, le=100)
    default_hours_per_day: float = Field(8, ge=0, le=24)
    location_id: Optional[str] = None
    is_active: bool = True


class AssignmentPayload(EntityPayload):
    project_id: str
    person_id: str
    role_id: str
    phase_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    allocation: float = Field(..., ge=0, le=100)
    assignment_date_mode: str = Field("fixed", pattern="^(fixed|phase|project)$")
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "AssignmentPayload":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectPhasePayload(EntityPayload):
    project_id: str
    phase_id: str
    name: Optional[str] = None
    start_date: date
    end_date: date
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "ProjectPhasePayload":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


# =============================================================================
# CATALOG
# =============================================================================

@dataclass(frozen=True)
class EntitySpec:
    """How one entity type is validated, stored canonically and named."""
    entity_type: EntityType
    payload_model: Type[EntityPayload]
    canonical_model: Any

    @property
    def fields(self) -> List[str]:
        """Declared field names, in declaration order."""
        return list(self.payload_model.model_fields.keys())

    def normalize(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate a full record and return its JSON-safe form."""
        return self.payload_model.model_validate(dict(data)).model_dump(mode="json")

    def from_row(self, row: Any) -> Dict[str, Any]:
        """
        JSON-safe payload of a canonical ORM row. NULL columns take the field default.

        Canonical rows are read as stored: write validation applies to
        overlay puts only.
        """
        values = {}
        for name in self.fields:
            value = getattr(row, name, None)
            if value is not None:
                values[name] = value
        return self.payload_model.model_construct(**values).model_dump(mode="json", warnings=False)


ENTITY_CATALOG: Dict[EntityType, EntitySpec] = {
    EntityType.PROJECT: EntitySpec(EntityType.PROJECT, ProjectPayload, Project),
    EntityType.PERSON: EntitySpec(EntityType.PERSON, PersonPayload, Person),
    EntityType.ASSIGNMENT: EntitySpec(EntityType.ASSIGNMENT, AssignmentPayload, ProjectAssignment),
    EntityType.PROJECT_PHASE: EntitySpec(EntityType.PROJECT_PHASE, ProjectPhasePayload, ProjectPhaseTimeline),
}


def get_entity_spec(entity_type: "EntityType | str") -> EntitySpec:
    return ENTITY_CATALOG[EntityType(entity_type)]


def ordered_field_names(entity_type: EntityType, old: Mapping[str, Any], new: Mapping[str, Any]) -> List[str]:
    """
    Field names of two payloads in declaration order.

    Keys that are not declared (payloads written by an older schema) come
    after the declared ones, sorted.
    """
    declared = ENTITY_CATALOG[entity_type].fields
    extra = sorted((set(old) | set(new)) - set(declared))
    return declared + extra


def format_validation_error(exc: ValidationError) -> str:
    """One-line summary of a pydantic validation error."""
    parts = []
    for err in exc.errors():
        location = ".".join(str(loc) for loc in err.get("loc", ())) or "payload"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


# =============================================================================
# DISPLAY NAMES
# =============================================================================

EntityLookup = Callable[[EntityType, Optional[str]], Optional[Dict[str, Any]]]


def entity_display_name(
    entity_type: EntityType,
    entity_id: str,
    payload: Mapping[str, Any],
    lookup: EntityLookup,
) -> str:
    """
    Human-readable name of an entity.

    `lookup` resolves related entities in the same scenario the payload came
    from, so an assignment is named after its person and project there.
    """
    if entity_type in (EntityType.PROJECT, EntityType.PERSON):
        return payload.get("name") or entity_id

    if entity_type == EntityType.PROJECT_PHASE:
        return payload.get("name") or payload.get("phase_id") or entity_id

    person = lookup(EntityType.PERSON, payload.get("person_id"))
    project = lookup(EntityType.PROJECT, payload.get("project_id"))
    person_name = (person or {}).get("name") or payload.get("person_id") or "?"
    project_name = (project or {}).get("name") or payload.get("project_id") or "?"
    return f"{person_name} on {project_name}"
