"""Commit log for tracking scenario changes."""
from capacity_planner.audit.models import CommitLog
from capacity_planner.audit.services import CommitLogService

__all__ = ["CommitLog", "CommitLogService"]
