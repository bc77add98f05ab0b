"""
Scenario Merge Coordinator - Folds a branch's overlay into its parent.

This is the ONLY place one scenario writes into another scenario's overlay.
Called only on explicit user request.

Architecture:
1. Validate the branch (active branch/sandbox) and its parent (active)
2. Detect parent entries written after the fork that the merge overwrites
3. Copy every branch entry into the parent overlay, tombstones included
4. Mark the branch merged, keeping its entries for history

Conflict policy: the branch wins. Divergence is reported, never blocking.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from capacity_planner.models.base import utcnow
from capacity_planner.scenarios.errors import NotMergeable
from capacity_planner.scenarios.models import (
    EntryState,
    OverlayEntry,
    Scenario,
    ScenarioKind,
    ScenarioStatus,
)
from capacity_planner.scenarios.overlay import OverlayStore
from capacity_planner.scenarios.registry import ScenarioRegistry
from capacity_planner.scenarios.schemas import MergeConflict, MergePreview

logger = logging.getLogger(__name__)


def entry_key(entry: OverlayEntry) -> str:
    return f"{entry.entity_type}/{entry.entity_id}"


@dataclass
class MergeOutcome:
    """What a completed merge wrote."""
    branch: Scenario
    parent_id: str
    entries_applied: int = 0
    tombstones_applied: int = 0
    overwritten_keys: List[str] = field(default_factory=list)
    conflicts: List[MergeConflict] = field(default_factory=list)

    @property
    def parent_has_diverged(self) -> bool:
        return bool(self.conflicts)


class MergeCoordinator:
    """
    Service for merging branches into their parents.

    Key principles:
    - Only active branches and sandboxes with an active parent merge
    - All writes and the status change happen in the caller's single transaction
    - The caller holds the scenario locks of (branch, parent)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = ScenarioRegistry(db)
        self.overlay = OverlayStore(db)

    async def merge_blocker(self, branch: Scenario) -> Optional[str]:
        """Why a branch cannot be merged, or None when it can."""
        if branch.kind == ScenarioKind.BASELINE.value or branch.parent_id is None:
            return "The baseline has no parent to merge into"
        if branch.status != ScenarioStatus.ACTIVE.value:
            return f"Scenario {branch.id} is {branch.status}"

        parent = await self.registry.get(branch.parent_id)
        if parent.status != ScenarioStatus.ACTIVE.value:
            return f"Parent scenario {parent.id} is {parent.status}"
        return None

    async def find_divergence(
        self,
        branch: Scenario,
        entries: List[OverlayEntry],
    ) -> Tuple[List[str], List[MergeConflict]]:
        """
        Parent entries the merge would overwrite with different content.

        Returns:
            Tuple of (overwritten_keys, conflicts) where conflicts are the
            overwritten entries the parent wrote after the branch was forked
        """
        if not entries or branch.parent_id is None:
            return [], []

        written_after_fork = (
            OverlayEntry.updated_at > branch.branch_point
            if branch.branch_point is not None
            else OverlayEntry.updated_at.is_not(None)
        )
        result = await self.db.execute(
            select(OverlayEntry, written_after_fork.label("after_fork"))
            .where(OverlayEntry.scenario_id == branch.parent_id)
        )
        parent_entries = {
            (row[0].entity_type, row[0].entity_id): (row[0], bool(row[1]))
            for row in result.all()
        }

        overwritten: List[str] = []
        conflicts: List[MergeConflict] = []
        for entry in entries:
            hit = parent_entries.get((entry.entity_type, entry.entity_id))
            if hit is None:
                continue
            parent_entry, after_fork = hit
            if parent_entry.state == entry.state and parent_entry.payload == entry.payload:
                continue

            overwritten.append(entry_key(entry))
            if after_fork:
                conflicts.append(MergeConflict(
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    parent_state=parent_entry.state,
                    parent_payload=parent_entry.payload,
                    branch_state=entry.state,
                    branch_payload=entry.payload,
                    parent_updated_at=parent_entry.updated_at,
                ))

        return overwritten, conflicts

    async def preview(self, branch_id: str) -> MergePreview:
        """Describe what merging a branch would do, without writing anything."""
        branch = await self.registry.get(branch_id)
        reason = await self.merge_blocker(branch)
        entries = await self.overlay.entries_for(branch.id)
        _, conflicts = await self.find_divergence(branch, entries)

        return MergePreview(
            branch_id=branch.id,
            parent_id=branch.parent_id,
            mergeable=reason is None,
            reason=reason,
            entries=len(entries),
            keys=[entry_key(e) for e in entries],
            parent_has_diverged=bool(conflicts),
            conflicts=conflicts,
        )

    async def merge(self, branch_id: str) -> MergeOutcome:
        """
        Apply every branch entry to the parent overlay and mark the branch merged.

        Raises:
            NotFound: unknown branch
            NotMergeable: baseline, terminal branch, or terminal parent
        """
        branch = await self.registry.get(branch_id, for_update=True)
        reason = await self.merge_blocker(branch)
        if reason is not None:
            raise NotMergeable(reason)

        parent = await self.registry.get(branch.parent_id, for_update=True)
        entries = await self.overlay.entries_for(branch.id)
        overwritten, conflicts = await self.find_divergence(branch, entries)

        if conflicts:
            logger.warning(
                f"Parent {parent.id} diverged since {branch.id} was forked; "
                f"merge overwrites {len(conflicts)} newer entr{'y' if len(conflicts) == 1 else 'ies'}: "
                f"{[f'{c.entity_type.value}/{c.entity_id}' for c in conflicts]}"
            )

        outcome = MergeOutcome(branch=branch, parent_id=parent.id, overwritten_keys=overwritten, conflicts=conflicts)
        for entry in entries:
            await self.overlay.write_entry(parent.id, entry.entity_type, entry.entity_id, entry.state, entry.payload)
            if entry.state == EntryState.TOMBSTONE.value:
                outcome.tombstones_applied += 1
            else:
                outcome.entries_applied += 1

        branch.status = ScenarioStatus.MERGED.value
        branch.merged_at = utcnow()
        await self.db.flush()

        logger.info(
            f"Merged {branch.id} into {parent.id}: "
            f"{outcome.entries_applied} entries, {outcome.tombstones_applied} tombstones"
        )
        return outcome
