"""
Commit Log model for tracking scenario changes.

One append-only record per overlay mutation (put, remove) and per merge,
plus scenario lifecycle records. Consumed by the history/audit views.
"""
from sqlalchemy import Column, String, DateTime, Text, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB

from capacity_planner.database import Base
from capacity_planner.models.base import generate_id, utcnow


class CommitLog(Base):
    """
    Commit Log - Tracks every change made through the scenario engine.

    Rows are never updated or deleted by the engine; deleting a scenario
    keeps its history.
    """

    __tablename__ = "commit_logs"

    id = Column(String, primary_key=True, default=lambda: generate_id("commit"))

    # Where did it change?
    scenario_id = Column(String, nullable=False, index=True)

    # What changed? (null entity for scenario-level records)
    entity_type = Column(String, nullable=True, index=True)
    entity_id = Column(String, nullable=True, index=True)

    # What kind of change?
    action = Column(String, nullable=False, index=True)
    # Options:
    # - "put": Overlay entry written
    # - "remove": Tombstone written
    # - "merge": Branch folded into its parent
    # - "create": Scenario created
    # - "archive": Scenario archived
    # - "delete": Scenario deleted

    message = Column(Text, nullable=False)

    # Who made the change?
    author = Column(String, nullable=True)

    # Additional context (e.g. {"target_scenario_id": ..., "entries": 12})
    extra_data = Column("extra_data", JSON().with_variant(JSONB, "postgresql"), nullable=True)

    # When?
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Indexes for common queries
    __table_args__ = (
        Index("ix_commit_log_entity", "entity_type", "entity_id"),
        Index("ix_commit_log_scenario_time", "scenario_id", "created_at"),
    )

    @property
    def timestamp(self):
        return self.created_at

    def __repr__(self):
        return (
            f"<CommitLog {self.id}: "
            f"{self.action} on {self.scenario_id}/{self.entity_type}/{self.entity_id} "
            f"at {self.created_at}>"
        )
