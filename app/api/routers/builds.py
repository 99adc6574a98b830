"""Builds router -- submit, list, inspect and cancel builds."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.api.deps import get_current_user
from app.api.rate_limit import build_limiter
from app.models import ScriptingBackend
from app.services.build_queue import build_queue, build_view

router = APIRouter(prefix="/builds", tags=["builds"])


class CreateBuildRequest(BaseModel):
    """Request body for submitting a build."""
    project_id: UUID
    branch: str | None = Field(default=None, max_length=255)
    scripting_backend: ScriptingBackend = ScriptingBackend.IL2CPP
    deploy_branch: str | None = Field(default=None, max_length=255)


# ── POST /builds ─────────────────────────────────────────────────────────


@router.post("", status_code=201)
async def create_build(
    body: CreateBuildRequest,
    user: dict = Depends(get_current_user),
):
    """Queue a build. Branch defaults to the project's default branch."""
    if not build_limiter.is_allowed(str(user["id"])):
        raise HTTPException(status_code=429, detail="Build rate limit exceeded")
    build = await build_queue.create_build(
        body.project_id,
        branch=body.branch,
        scripting_backend=body.scripting_backend,
        deploy_branch=body.deploy_branch,
        triggered_by_id=user["id"],
    )
    build.setdefault("triggered_by_username", user.get("username"))
    return build_view(build)


# ── GET /builds ──────────────────────────────────────────────────────────


@router.get("")
async def list_builds(
    project_id: UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=200),
    user: dict = Depends(get_current_user),
):
    """List builds newest first, optionally for one project."""
    rows, total = await build_queue.list_builds(project_id, page=page, page_size=page_size)
    return {
        "items": [build_view(r) for r in rows],
        "total": total,
        "page": page,
    }


# ── GET /builds/{build_id} ───────────────────────────────────────────────


@router.get("/{build_id}")
async def get_build(
    build_id: UUID,
    user: dict = Depends(get_current_user),
):
    """Return one build with its logs."""
    build = await build_queue.get_build(build_id)
    logs = await build_queue.get_build_logs(build_id)
    return {**build_view(build), "logs": logs}


# ── GET /builds/{build_id}/logs ──────────────────────────────────────────


@router.get("/{build_id}/logs")
async def get_build_logs(
    build_id: UUID,
    after: int | None = Query(default=None, ge=0),
    user: dict = Depends(get_current_user),
):
    """Return a build's logs, skipping the first *after* entries."""
    return {"items": await build_queue.get_build_logs(build_id, after)}


# ── POST /builds/{build_id}/cancel ───────────────────────────────────────


@router.post("/{build_id}/cancel")
async def cancel_build(
    build_id: UUID,
    user: dict = Depends(get_current_user),
):
    """Cancel a queued or running build."""
    await build_queue.cancel_build(build_id)
    return {"message": "Build cancelled"}
