"""Scenario Versioning Models - registry rows and overlay entries."""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, JSON, UniqueConstraint, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import aliased, column_property, relationship
import enum

from capacity_planner.database import Base
from capacity_planner.models.base import generate_id, utcnow


class ScenarioKind(str, enum.Enum):
    """Scenario kinds."""
    BASELINE = "baseline"  # The single root, resolves to canonical data
    BRANCH = "branch"      # Long-lived what-if, merged back when agreed
    SANDBOX = "sandbox"    # Throwaway experiment


class ScenarioStatus(str, enum.Enum):
    """Scenario lifecycle status."""
    ACTIVE = "active"      # Accepts overlay writes
    ARCHIVED = "archived"  # Read-only, still comparable
    MERGED = "merged"      # Folded into its parent, kept for history


TERMINAL_STATUSES = (ScenarioStatus.ARCHIVED.value, ScenarioStatus.MERGED.value)


class EntryState(str, enum.Enum):
    """State of an overlay entry."""
    PRESENT = "present"
    TOMBSTONE = "tombstone"


class Scenario(Base):
    """A named, independently editable view of the planning data."""
    __tablename__ = "scenarios"

    id = Column(String, primary_key=True, default=lambda: generate_id("scenario"))

    # Identification
    name = Column(String(255), nullable=False)
    description = Column(String)
    kind = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=ScenarioStatus.ACTIVE.value, index=True)

    # Lineage: null only for the baseline
    parent_id = Column(String, ForeignKey("scenarios.id"), nullable=True, index=True)
    branch_point = Column(DateTime(timezone=True))  # When the scenario was forked

    # Merge tracking
    merged_at = Column(DateTime(timezone=True))

    # Metadata
    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    overlay_entries = relationship(
        "OverlayEntry",
        back_populates="scenario",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        # At most one baseline row
        Index(
            "uq_single_baseline",
            "kind",
            unique=True,
            postgresql_where=(kind == ScenarioKind.BASELINE.value),
            sqlite_where=(kind == ScenarioKind.BASELINE.value),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ScenarioStatus.ACTIVE.value

    def __repr__(self):
        return f"<Scenario {self.id}: {self.name} ({self.kind}, {self.status})>"


class OverlayEntry(Base):
    """
    A scenario-local addition, modification or deletion of one entity.

    Exactly one row per (scenario_id, entity_type, entity_id): writes replace
    the row. A tombstone shadows every ancestor's value for the key.
    """
    __tablename__ = "scenario_overlay_entries"

    id = Column(String, primary_key=True, default=lambda: generate_id("ovl"))
    scenario_id = Column(String, ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False)

    # What is overridden
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)

    # present | tombstone
    state = Column(String, nullable=False)

    # Full entity record for present entries, null for tombstones
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    # Metadata
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    scenario = relationship("Scenario", back_populates="overlay_entries")

    __table_args__ = (
        UniqueConstraint("scenario_id", "entity_type", "entity_id", name="uq_overlay_entry_key"),
        Index("ix_overlay_entry_scenario_type", "scenario_id", "entity_type"),
    )

    @property
    def is_tombstone(self) -> bool:
        return self.state == EntryState.TOMBSTONE.value

    def __repr__(self):
        return f"<OverlayEntry {self.scenario_id}:{self.entity_type}/{self.entity_id} ({self.state})>"


# Parent's display name, loaded with every scenario query
_parent = aliased(Scenario)
Scenario.parent_name = column_property(
    select(_parent.name)
    .where(_parent.id == Scenario.parent_id)
    .correlate_except(_parent)
    .scalar_subquery(),
    expire_on_flush=False,
)
