"""
Canonical planning records.

These tables hold the live plan that the baseline scenario resolves to when
no overlay entry exists. Record management (forms, imports) lives outside the
scenario engine; the engine only reads these rows.
"""
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Float, Date, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from capacity_planner.database import Base
from capacity_planner.models.base import generate_id, utcnow


class Project(Base):
    """A project that demands capacity from roles."""
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: generate_id("proj"))
    name = Column(String(255), nullable=False)
    project_type_id = Column(String)
    location_id = Column(String)
    priority = Column(Integer, nullable=False, default=5)
    description = Column(Text)
    include_in_demand = Column(Boolean, default=True)

    # Target window
    aspiration_start = Column(Date)
    aspiration_finish = Column(Date)

    owner_id = Column(String, ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    current_phase_id = Column(String)

    # Known demand: {"role_id": required total allocation percentage}
    role_demands = Column(JSON().with_variant(JSONB, "postgresql"), default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Person(Base):
    """A person whose allocation is planned."""
    __tablename__ = "people"

    id = Column(String, primary_key=True, default=lambda: generate_id("person"))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True)
    primary_role_id = Column(String)
    worker_type = Column(String, default="FTE")  # FTE, Contractor, Consultant
    supervisor_id = Column(String, ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    default_availability_percentage = Column(Float, default=100)
    default_hours_per_day = Column(Float, default=8)
    location_id = Column(String)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProjectAssignment(Base):
    """A person allocated to a project in a role."""
    __tablename__ = "project_assignments"

    id = Column(String, primary_key=True, default=lambda: generate_id("asgn"))
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(String, ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String, nullable=False, index=True)
    phase_id = Column(String)

    start_date = Column(Date)
    end_date = Column(Date)
    allocation = Column(Float, nullable=False)  # percentage of the person's time
    assignment_date_mode = Column(String, default="fixed")  # fixed, phase, project
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProjectPhaseTimeline(Base):
    """Dates of one phase within one project."""
    __tablename__ = "project_phases_timeline"

    id = Column(String, primary_key=True, default=lambda: generate_id("phase"))
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    phase_id = Column(String, nullable=False)
    name = Column(String(255))
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "phase_id", name="uq_project_phase_timeline"),
    )
