"""Scenario versioning API routes."""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import Any, Dict, List, Optional

from capacity_planner.data.entities import EntityType
from capacity_planner.scenarios import schemas
from capacity_planner.scenarios.models import ScenarioKind, ScenarioStatus
from capacity_planner.scenarios.service import ScenarioEngine

router = APIRouter()


def get_engine(request: Request) -> ScenarioEngine:
    """Dependency to get the application's scenario engine."""
    return request.app.state.scenario_engine


# ============================================================================
# SCENARIO ROUTES
# ============================================================================

@router.get("", response_model=List[schemas.ScenarioResponse])
async def list_scenarios(
    kind: Optional[ScenarioKind] = Query(None),
    status: Optional[ScenarioStatus] = Query(None),
    parent_id: Optional[str] = Query(None),
    engine: ScenarioEngine = Depends(get_engine),
):
    """List scenarios, oldest first."""
    return await engine.list_branches(
        kind=kind.value if kind else None,
        status=status.value if status else None,
        parent_id=parent_id,
    )


@router.post("", response_model=schemas.ScenarioResponse, status_code=201)
async def create_scenario(
    data: schemas.ScenarioCreate,
    engine: ScenarioEngine = Depends(get_engine),
):
    """Create a branch or sandbox from a base scenario."""
    return await engine.create_branch(
        name=data.name,
        base_scenario_id=data.base_scenario_id,
        description=data.description,
        kind=data.kind.value,
        created_by=data.created_by,
    )


# Registered before /{scenario_id} so "history" is not taken for an id
@router.get("/history", response_model=List[schemas.CommitLogResponse])
async def get_history(
    scenario_id: Optional[str] = Query(None),
    entity_type: Optional[EntityType] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    engine: ScenarioEngine = Depends(get_engine),
):
    """Commit history, newest first."""
    return await engine.get_history(
        scenario_id=scenario_id,
        entity_type=entity_type.value if entity_type else None,
        entity_id=entity_id,
        limit=limit,
    )


@router.get("/{scenario_id}", response_model=schemas.ScenarioResponse)
async def get_scenario(scenario_id: str, engine: ScenarioEngine = Depends(get_engine)):
    """Get a scenario."""
    return await engine.get_scenario(scenario_id)


@router.put("/{scenario_id}", response_model=schemas.ScenarioResponse)
async def update_scenario(
    scenario_id: str,
    data: schemas.ScenarioUpdate,
    engine: ScenarioEngine = Depends(get_engine),
):
    """Update scenario name or description."""
    return await engine.update_scenario(scenario_id, name=data.name, description=data.description)


@router.delete("/{scenario_id}")
async def delete_scenario(
    scenario_id: str,
    author: Optional[str] = Query(None),
    engine: ScenarioEngine = Depends(get_engine),
):
    """Delete a scenario and its overlay entries."""
    await engine.delete_scenario(scenario_id, author=author)
    return {"message": "Scenario deleted successfully"}


@router.post("/{scenario_id}/archive", response_model=schemas.ScenarioResponse)
async def archive_scenario(
    scenario_id: str,
    author: Optional[str] = Query(None),
    engine: ScenarioEngine = Depends(get_engine),
):
    """Archive a scenario. It stays comparable but accepts no more writes."""
    return await engine.archive_scenario(scenario_id, author=author)


@router.post("/{scenario_id}/checkout", response_model=schemas.CheckoutResponse)
async def checkout_scenario(scenario_id: str, engine: ScenarioEngine = Depends(get_engine)):
    """Validate a scenario and return a handle to work in it."""
    return await engine.checkout_branch(scenario_id)


# ============================================================================
# ENTITY ROUTES
# ============================================================================

@router.get("/{scenario_id}/entries", response_model=List[schemas.OverlayEntryResponse])
async def list_entries(
    scenario_id: str,
    entity_type: Optional[EntityType] = Query(None),
    engine: ScenarioEngine = Depends(get_engine),
):
    """This scenario's own overlay entries."""
    return await engine.list_entries(scenario_id, entity_type.value if entity_type else None)


@router.get("/{scenario_id}/entities/{entity_type}", response_model=Dict[str, Dict[str, Any]])
async def list_entities(
    scenario_id: str,
    entity_type: EntityType,
    engine: ScenarioEngine = Depends(get_engine),
):
    """Every entity of a type as seen from the scenario."""
    return await engine.effective_entities(scenario_id, entity_type)


@router.get("/{scenario_id}/entities/{entity_type}/{entity_id}", response_model=Dict[str, Any])
async def get_entity(
    scenario_id: str,
    entity_type: EntityType,
    entity_id: str,
    engine: ScenarioEngine = Depends(get_engine),
):
    """Effective value of one entity in the scenario."""
    payload = await engine.resolve_entity(scenario_id, entity_type, entity_id)
    if payload is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {entity_id} not found")
    return payload


@router.put("/{scenario_id}/entities/{entity_type}/{entity_id}", response_model=schemas.OverlayEntryResponse)
async def put_entity(
    scenario_id: str,
    entity_type: EntityType,
    entity_id: str,
    data: schemas.EntityWrite,
    engine: ScenarioEngine = Depends(get_engine),
):
    """Add or modify an entity in the scenario."""
    return await engine.put_entity(scenario_id, entity_type, entity_id, data.payload, author=data.author)


@router.delete("/{scenario_id}/entities/{entity_type}/{entity_id}", response_model=schemas.OverlayEntryResponse)
async def remove_entity(
    scenario_id: str,
    entity_type: EntityType,
    entity_id: str,
    author: Optional[str] = Query(None),
    engine: ScenarioEngine = Depends(get_engine),
):
    """Delete an entity in the scenario (writes a tombstone)."""
    return await engine.remove_entity(scenario_id, entity_type, entity_id, author=author)


# ============================================================================
# COMPARE & MERGE ROUTES
# ============================================================================

@router.get("/{scenario_id}/compare", response_model=schemas.ComparisonResult)
async def compare_scenarios(
    scenario_id: str,
    compare_to: Optional[str] = Query(None, description="Scenario B; defaults to the parent of scenario A"),
    engine: ScenarioEngine = Depends(get_engine),
):
    """
    Compare two scenarios.

    With compare_to, scenario_id is side A and compare_to side B. Without it,
    the scenario is compared against its parent (parent is side A).
    """
    if compare_to:
        return await engine.compare_branches(scenario_id, compare_to)
    return await engine.compare_to_parent(scenario_id)


@router.get("/{scenario_id}/merge/preview", response_model=schemas.MergePreview)
async def preview_merge(scenario_id: str, engine: ScenarioEngine = Depends(get_engine)):
    """What merging the scenario into its parent would write."""
    return await engine.preview_merge(scenario_id)


@router.post("/{scenario_id}/merge", response_model=schemas.MergeResult)
async def merge_scenario(
    scenario_id: str,
    data: Optional[schemas.MergeRequest] = None,
    engine: ScenarioEngine = Depends(get_engine),
):
    """Merge the scenario into its parent. The branch wins on every key it changed."""
    return await engine.merge_branch(scenario_id, author=data.author if data else None)
