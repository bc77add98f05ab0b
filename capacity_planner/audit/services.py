"""
Commit Log Service for recording scenario changes.

This service provides a simple interface for writing one history record per
engine mutation and for reading the history back.
"""
from typing import Optional, Dict, Any, List, Literal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, desc

from capacity_planner.audit.models import CommitLog


# Type aliases
ActionType = Literal["put", "remove", "merge", "create", "archive", "delete"]


class CommitLogService:
    """
    Service for logging commit records.

    Usage:
        commits = CommitLogService(db, author="planner@example.com")
        await commits.log_put(scenario_id, "assignment", "asgn_1", {"allocation": 75})
        await commits.log_merge(branch_id, parent_id, entries=3)
    """

    def __init__(self, db: AsyncSession, author: Optional[str] = None):
        self.db = db
        self.author = author

    # ==========================================================================
    # Core Logging Methods
    # ==========================================================================

    async def log(
        self,
        scenario_id: str,
        action: ActionType,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> CommitLog:
        """
        Log a commit record.

        Args:
            scenario_id: Scenario the change was made in
            action: Type of action
            message: Human-readable summary
            entity_type: Type of entity changed (None for scenario-level records)
            entity_id: ID of the entity
            extra_data: Additional context

        Returns:
            Created CommitLog
        """
        record = CommitLog(
            scenario_id=scenario_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            message=message,
            author=self.author,
            extra_data=extra_data,
        )

        self.db.add(record)
        # Don't commit here - let caller manage transaction
        return record

    # ==========================================================================
    # Convenience Methods
    # ==========================================================================

    async def log_put(
        self,
        scenario_id: str,
        entity_type: str,
        entity_id: str,
        changes: Dict[str, Any],
        created: bool = False,
    ) -> CommitLog:
        """Log an overlay write."""
        verb = "Add" if created else "Update"
        return await self.log(
            scenario_id=scenario_id,
            action="put",
            message=f"{verb} {entity_type} {entity_id}",
            entity_type=entity_type,
            entity_id=entity_id,
            extra_data={"changes": changes},
        )

    async def log_remove(
        self,
        scenario_id: str,
        entity_type: str,
        entity_id: str,
    ) -> CommitLog:
        """Log a tombstone write."""
        return await self.log(
            scenario_id=scenario_id,
            action="remove",
            message=f"Remove {entity_type} {entity_id}",
            entity_type=entity_type,
            entity_id=entity_id,
        )

    async def log_merge(
        self,
        branch_id: str,
        parent_id: str,
        entries: int,
        overwritten_keys: Optional[List[str]] = None,
    ) -> CommitLog:
        """Log a merge of a branch into its parent."""
        return await self.log(
            scenario_id=branch_id,
            action="merge",
            message=f"Merge {branch_id} into {parent_id} ({entries} entries)",
            extra_data={
                "target_scenario_id": parent_id,
                "entries": entries,
                "overwritten_keys": overwritten_keys or [],
            },
        )

    async def log_lifecycle(
        self,
        scenario_id: str,
        action: Literal["create", "archive", "delete"],
        message: str,
    ) -> CommitLog:
        """Log a scenario lifecycle change."""
        return await self.log(scenario_id=scenario_id, action=action, message=message)

    # ==========================================================================
    # Query Methods
    # ==========================================================================

    async def get_history(
        self,
        scenario_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[CommitLog]:
        """Get commit history, newest first, optionally filtered."""
        conditions = []
        if scenario_id:
            conditions.append(CommitLog.scenario_id == scenario_id)
        if entity_type:
            conditions.append(CommitLog.entity_type == entity_type)
        if entity_id:
            conditions.append(CommitLog.entity_id == entity_id)

        query = select(CommitLog)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(desc(CommitLog.created_at)).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
