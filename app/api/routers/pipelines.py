"""Pipelines router -- pipeline/process authoring and the worker process plan."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from app.api.deps import get_current_user, get_worker_or_user, require_editor
from app.models import BuildPhase, ProcessType
from app.services import pipeline_service

router = APIRouter(prefix="/pipelines", tags=["pipelines"])


class CreatePipelineRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    project_id: UUID | None = None
    is_default: bool = False


class UpdatePipelineRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_default: bool | None = None
    is_active: bool | None = None


class CreateProcessRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: ProcessType
    phase: BuildPhase
    order: int = 0
    configuration: dict = Field(default_factory=dict)


class UpdateProcessRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    phase: BuildPhase | None = None
    order: int | None = None
    configuration: dict | None = None
    is_enabled: bool | None = None


class ReorderProcessesRequest(BaseModel):
    process_ids: list[UUID]


# ── pipelines ────────────────────────────────────────────────────────────


@router.get("")
async def list_pipelines(
    project_id: UUID | None = Query(default=None),
    user: dict = Depends(get_current_user),
):
    """All pipelines, or one project's plus the global ones."""
    return {"items": await pipeline_service.list_pipelines(project_id)}


@router.get("/types")
async def list_process_types(user: dict = Depends(get_current_user)):
    """Process types with their default phase and configuration."""
    return {"items": pipeline_service.list_process_types()}


@router.post("", status_code=201)
async def create_pipeline(
    body: CreatePipelineRequest,
    user: dict = Depends(require_editor),
):
    return await pipeline_service.create_pipeline(
        body.name,
        description=body.description,
        project_id=body.project_id,
        is_default=body.is_default,
    )


@router.get("/{pipeline_id}")
async def get_pipeline(
    pipeline_id: UUID,
    user: dict = Depends(get_current_user),
):
    """One pipeline with every process, ordered by ``order``."""
    return await pipeline_service.get_pipeline_detail(pipeline_id)


@router.put("/{pipeline_id}")
async def update_pipeline(
    pipeline_id: UUID,
    body: UpdatePipelineRequest,
    user: dict = Depends(require_editor),
):
    """Partial update; ``is_default: true`` demotes the scope's other default."""
    return await pipeline_service.update_pipeline(pipeline_id, **body.model_dump(exclude_none=True))


@router.delete("/{pipeline_id}", status_code=204)
async def delete_pipeline(
    pipeline_id: UUID,
    user: dict = Depends(require_editor),
):
    await pipeline_service.delete_pipeline(pipeline_id)
    return Response(status_code=204)


# ── processes ────────────────────────────────────────────────────────────


@router.post("/{pipeline_id}/process", status_code=201)
async def add_process(
    pipeline_id: UUID,
    body: CreateProcessRequest,
    user: dict = Depends(require_editor),
):
    return await pipeline_service.add_process(
        pipeline_id,
        name=body.name,
        process_type=body.type,
        phase=body.phase,
        order=body.order,
        configuration=body.configuration,
    )


@router.put("/{pipeline_id}/process/{process_id}")
async def update_process(
    pipeline_id: UUID,
    process_id: UUID,
    body: UpdateProcessRequest,
    user: dict = Depends(require_editor),
):
    return await pipeline_service.update_process(
        pipeline_id, process_id, **body.model_dump(exclude_none=True),
    )


@router.delete("/{pipeline_id}/process/{process_id}", status_code=204)
async def delete_process(
    pipeline_id: UUID,
    process_id: UUID,
    user: dict = Depends(require_editor),
):
    await pipeline_service.delete_process(pipeline_id, process_id)
    return Response(status_code=204)


@router.put("/{pipeline_id}/reorder")
async def reorder_processes(
    pipeline_id: UUID,
    body: ReorderProcessesRequest,
    user: dict = Depends(require_editor),
):
    """``order`` becomes each id's index in ``process_ids``."""
    updated = await pipeline_service.reorder_processes(pipeline_id, body.process_ids)
    return {"updated": updated}


# ── worker plan ──────────────────────────────────────────────────────────


@router.get("/{pipeline_id}/worker-plan")
async def get_worker_plan(
    pipeline_id: UUID,
    caller: dict = Depends(get_worker_or_user),
):
    """Enabled processes per phase, ascending order, ties in creation order."""
    return await pipeline_service.get_worker_pipeline(pipeline_id)
