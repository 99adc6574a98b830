"""Pipeline service -- pipeline authoring and the worker process plan.

Processes are not executed here.  The worker contract is only the
ordering: enabled processes of one phase, ascending ``order``, ties
keeping the order in which the processes were created.
"""

import logging
from typing import Iterable
from uuid import UUID

from pydantic import ValidationError

from app.errors import NotFoundError, ValidationFailure
from app.models import PROCESS_CONFIG_MODELS, BuildPhase, ProcessType
from app.repos import pipeline_repo, project_repo

logger = logging.getLogger(__name__)


def order_processes(processes: Iterable[dict], phase: BuildPhase) -> list[dict]:
    """Return the enabled processes of *phase* in execution order.

    *processes* must already be in insertion order; ``sorted`` is stable,
    so equal ``order`` values keep that relative order.
    """
    phase = BuildPhase(phase)
    selected = [
        p for p in processes
        if p.get("is_enabled", True) and BuildPhase(p["phase"]) is phase
    ]
    return sorted(selected, key=lambda p: p["order"])


def parse_configuration(process_type: ProcessType | str, configuration: dict | None) -> dict:
    """Validate a process configuration against its type's model.

    Returns the camelCase form the worker consumes.
    """
    try:
        model = PROCESS_CONFIG_MODELS[ProcessType(process_type)]
    except ValueError:
        raise ValidationFailure(f"Unknown process type: {process_type}") from None
    try:
        return model.model_validate(configuration or {}).model_dump(by_alias=True)
    except ValidationError as exc:
        raise ValidationFailure(f"Invalid {process_type} configuration: {exc}") from exc


def _worker_step(process: dict) -> dict:
    return {
        "id": str(process["id"]),
        "name": process["name"],
        "type": process["process_type"],
        "order": process["order"],
        "configuration": parse_configuration(process["process_type"], process.get("configuration")),
    }


async def get_worker_pipeline(pipeline_id: UUID) -> dict:
    """Build the plan a worker executes for *pipeline_id*."""
    pipeline = await pipeline_repo.get_pipeline_by_id(pipeline_id)
    if pipeline is None:
        raise NotFoundError(f"Pipeline {pipeline_id} not found")

    processes = await pipeline_repo.get_processes(pipeline_id)
    return {
        "pipelineId": str(pipeline["id"]),
        "name": pipeline["name"],
        "preBuild": [_worker_step(p) for p in order_processes(processes, BuildPhase.PRE_BUILD)],
        "postBuild": [_worker_step(p) for p in order_processes(processes, BuildPhase.POST_BUILD)],
    }


async def resolve_pipeline_for_project(project_id: UUID) -> dict | None:
    """The project's active default pipeline, else the global default, else None."""
    pipeline = await pipeline_repo.get_default_pipeline(project_id)
    if pipeline is None:
        logger.debug("No default pipeline for project %s", project_id)
    return pipeline


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------

# (display name, description, default phase) per process type.
_PROCESS_TYPE_INFO: dict[ProcessType, tuple[str, str, BuildPhase]] = {
    ProcessType.DEFINE_SYMBOLS: (
        "Define Symbols", "Add or remove scripting define symbols before build", BuildPhase.PRE_BUILD,
    ),
    ProcessType.PLAYER_SETTINGS: (
        "Player Settings", "Modify Unity PlayerSettings before build", BuildPhase.PRE_BUILD,
    ),
    ProcessType.SCENE_LIST: (
        "Scene List", "Configure which scenes to include in build", BuildPhase.PRE_BUILD,
    ),
    ProcessType.CUSTOM_CODE: (
        "Custom Code", "Execute custom C# code during build", BuildPhase.PRE_BUILD,
    ),
    ProcessType.SHELL_COMMAND: (
        "Shell Command", "Execute shell/batch command", BuildPhase.POST_BUILD,
    ),
    ProcessType.FILE_COPY: (
        "File Copy", "Copy or move files", BuildPhase.POST_BUILD,
    ),
}


def list_process_types() -> list[dict]:
    """Every process type with its default phase and configuration."""
    return [
        {
            "type": process_type.value,
            "name": name,
            "description": description,
            "default_phase": phase.value,
            "default_configuration": PROCESS_CONFIG_MODELS[process_type]().model_dump(by_alias=True),
        }
        for process_type, (name, description, phase) in _PROCESS_TYPE_INFO.items()
    ]


def pipeline_view(pipeline: dict) -> dict:
    view = {
        "id": str(pipeline["id"]),
        "name": pipeline["name"],
        "description": pipeline.get("description"),
        "project_id": str(pipeline["project_id"]) if pipeline.get("project_id") else None,
        "project_name": pipeline.get("project_name"),
        "is_default": pipeline["is_default"],
        "is_active": pipeline["is_active"],
        "created_at": pipeline.get("created_at"),
        "updated_at": pipeline.get("updated_at"),
    }
    if "process_count" in pipeline:
        view["process_count"] = int(pipeline["process_count"])
    return view


def process_view(process: dict) -> dict:
    return {
        "id": str(process["id"]),
        "pipeline_id": str(process["pipeline_id"]),
        "name": process["name"],
        "type": process["process_type"],
        "phase": process["phase"],
        "order": process["order"],
        "configuration": process.get("configuration") or {},
        "is_enabled": process["is_enabled"],
        "created_at": process.get("created_at"),
    }


async def _require_pipeline(pipeline_id: UUID) -> dict:
    pipeline = await pipeline_repo.get_pipeline_by_id(pipeline_id)
    if pipeline is None:
        raise NotFoundError("Pipeline not found")
    return pipeline


async def list_pipelines(project_id: UUID | None = None) -> list[dict]:
    """Pipelines sorted by name; a project filter keeps global pipelines too."""
    return [pipeline_view(p) for p in await pipeline_repo.list_pipelines(project_id)]


async def get_pipeline_detail(pipeline_id: UUID) -> dict:
    """A pipeline with all of its processes, disabled ones included.

    Processes come back by ascending ``order``, ties in creation order.
    """
    pipeline = await _require_pipeline(pipeline_id)
    processes = await pipeline_repo.get_processes(pipeline_id)
    ordered = sorted(processes, key=lambda p: p["order"])
    return {**pipeline_view(pipeline), "processes": [process_view(p) for p in ordered]}


async def create_pipeline(
    name: str,
    *,
    description: str | None = None,
    project_id: UUID | None = None,
    is_default: bool = False,
) -> dict:
    """Create a pipeline; a global one when *project_id* is None."""
    if project_id is not None and await project_repo.get_project_by_id(project_id) is None:
        raise NotFoundError(f"Project {project_id} not found")
    pipeline = await pipeline_repo.create_pipeline(
        name, description=description, project_id=project_id, is_default=is_default,
    )
    logger.info("Pipeline %r created (project=%s, default=%s)", name, project_id, is_default)
    return {**pipeline_view(pipeline), "process_count": 0}


async def update_pipeline(pipeline_id: UUID, **fields) -> dict:  # noqa: ANN003
    pipeline = await pipeline_repo.update_pipeline(pipeline_id, **fields)
    if pipeline is None:
        raise NotFoundError("Pipeline not found")
    return pipeline_view(pipeline)


async def delete_pipeline(pipeline_id: UUID) -> None:
    if not await pipeline_repo.delete_pipeline(pipeline_id):
        raise NotFoundError("Pipeline not found")
    logger.info("Pipeline %s deleted", pipeline_id)


async def add_process(
    pipeline_id: UUID,
    *,
    name: str,
    process_type: ProcessType,
    phase: BuildPhase,
    order: int = 0,
    configuration: dict | None = None,
) -> dict:
    """Append a process.  Its configuration is validated for its type."""
    await _require_pipeline(pipeline_id)
    process_type = ProcessType(process_type)
    process = await pipeline_repo.add_process(
        pipeline_id,
        name=name,
        process_type=process_type.value,
        phase=BuildPhase(phase).value,
        order=order,
        configuration=parse_configuration(process_type, configuration),
    )
    return process_view(process)


async def update_process(
    pipeline_id: UUID,
    process_id: UUID,
    *,
    name: str | None = None,
    phase: BuildPhase | None = None,
    order: int | None = None,
    configuration: dict | None = None,
    is_enabled: bool | None = None,
) -> dict:
    """Partial update.  The process type is fixed at creation."""
    existing = await pipeline_repo.get_process(pipeline_id, process_id)
    if existing is None:
        raise NotFoundError("Process not found")
    if configuration is not None:
        configuration = parse_configuration(existing["process_type"], configuration)
    process = await pipeline_repo.update_process(
        pipeline_id,
        process_id,
        name=name,
        phase=BuildPhase(phase).value if phase is not None else None,
        order=order,
        configuration=configuration,
        is_enabled=is_enabled,
    )
    if process is None:
        raise NotFoundError("Process not found")
    return process_view(process)


async def delete_process(pipeline_id: UUID, process_id: UUID) -> None:
    if not await pipeline_repo.delete_process(pipeline_id, process_id):
        raise NotFoundError("Process not found")


async def reorder_processes(pipeline_id: UUID, process_ids: list[UUID]) -> int:
    """Give each listed process its list index as ``order``.

    Unknown ids are skipped; processes not listed keep their order.
    """
    await _require_pipeline(pipeline_id)
    return await pipeline_repo.reorder_processes(pipeline_id, process_ids)
