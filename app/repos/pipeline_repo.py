"""Pipeline repository -- build_pipelines and build_processes tables."""

import json
from uuid import UUID

from app.repos.db import get_pool

_PIPELINE_COLUMNS = """
    bp.id, bp.name, bp.description, bp.project_id, bp.is_default,
    bp.is_active, bp.created_at, bp.updated_at
"""

_PROCESS_COLUMNS = """
    id, pipeline_id, name, process_type, phase, "order",
    configuration_json, is_enabled, position, created_at
"""

# At most one default per scope; the scope is a project or global (NULL).
_CLEAR_OTHER_DEFAULTS = """
    UPDATE build_pipelines
       SET is_default = false, updated_at = now()
     WHERE is_default
       AND project_id IS NOT DISTINCT FROM $1
       AND ($2::uuid IS NULL OR id <> $2)
"""


# ---------------------------------------------------------------------------
# build_pipelines
# ---------------------------------------------------------------------------


async def get_pipeline_by_id(pipeline_id: UUID) -> dict | None:
    """Fetch a pipeline by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_PIPELINE_COLUMNS}, p.name AS project_name
        FROM build_pipelines bp
        LEFT JOIN projects p ON p.id = bp.project_id
        WHERE bp.id = $1
        """,
        pipeline_id,
    )
    return dict(row) if row else None


async def list_pipelines(project_id: UUID | None = None) -> list[dict]:
    """List pipelines by name with their process counts.

    With *project_id*, only that project's pipelines plus the global ones.
    """
    pool = await get_pool()
    rows = await pool.fetch(
        f"""
        SELECT {_PIPELINE_COLUMNS}, p.name AS project_name,
               (SELECT COUNT(*) FROM build_processes pr
                 WHERE pr.pipeline_id = bp.id) AS process_count
        FROM build_pipelines bp
        LEFT JOIN projects p ON p.id = bp.project_id
        WHERE $1::uuid IS NULL OR bp.project_id = $1 OR bp.project_id IS NULL
        ORDER BY bp.name
        """,
        project_id,
    )
    return [dict(r) for r in rows]


async def get_default_pipeline(project_id: UUID) -> dict | None:
    """Return the active default pipeline for a project.

    A project-scoped default wins over a global (project_id IS NULL) one.
    """
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_PIPELINE_COLUMNS}
        FROM build_pipelines bp
        WHERE bp.is_default AND bp.is_active
          AND (bp.project_id = $1 OR bp.project_id IS NULL)
        ORDER BY bp.project_id IS NULL, bp.created_at
        LIMIT 1
        """,
        project_id,
    )
    return dict(row) if row else None


async def create_pipeline(
    name: str,
    *,
    description: str | None = None,
    project_id: UUID | None = None,
    is_default: bool = False,
) -> dict:
    """Insert a pipeline. A new default demotes the scope's previous default."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if is_default:
                await conn.execute(_CLEAR_OTHER_DEFAULTS, project_id, None)
            row = await conn.fetchrow(
                """
                INSERT INTO build_pipelines (name, description, project_id, is_default)
                VALUES ($1, $2, $3, $4)
                RETURNING id, name, description, project_id, is_default,
                          is_active, created_at, updated_at
                """,
                name,
                description,
                project_id,
                is_default,
            )
    return dict(row)


async def update_pipeline(
    pipeline_id: UUID,
    *,
    name: str | None = None,
    description: str | None = None,
    is_default: bool | None = None,
    is_active: bool | None = None,
) -> dict | None:
    """Apply the given fields; None leaves a column unchanged.

    Returns the updated row, or None if the pipeline does not exist.
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if is_default:
                scope = await conn.fetchrow(
                    "SELECT project_id FROM build_pipelines WHERE id = $1",
                    pipeline_id,
                )
                if scope is None:
                    return None
                await conn.execute(_CLEAR_OTHER_DEFAULTS, scope["project_id"], pipeline_id)
            row = await conn.fetchrow(
                """
                UPDATE build_pipelines
                   SET name        = COALESCE($2, name),
                       description = COALESCE($3, description),
                       is_default  = COALESCE($4, is_default),
                       is_active   = COALESCE($5, is_active),
                       updated_at  = now()
                 WHERE id = $1
                RETURNING id, name, description, project_id, is_default,
                          is_active, created_at, updated_at
                """,
                pipeline_id,
                name,
                description,
                is_default,
                is_active,
            )
    return dict(row) if row else None


async def delete_pipeline(pipeline_id: UUID) -> bool:
    """Delete a pipeline and (by cascade) its processes."""
    pool = await get_pool()
    result = await pool.execute("DELETE FROM build_pipelines WHERE id = $1", pipeline_id)
    return result != "DELETE 0"


# ---------------------------------------------------------------------------
# build_processes
# ---------------------------------------------------------------------------


async def get_processes(pipeline_id: UUID) -> list[dict]:
    """Fetch every process of a pipeline in insertion order.

    ``position`` is a BIGSERIAL, so it records the order rows were created.
    Ordering by ``order`` is left to the pipeline service.
    """
    pool = await get_pool()
    rows = await pool.fetch(
        f"""
        SELECT {_PROCESS_COLUMNS}
        FROM build_processes
        WHERE pipeline_id = $1
        ORDER BY position
        """,
        pipeline_id,
    )
    return [_process_to_dict(r) for r in rows]


async def get_process(pipeline_id: UUID, process_id: UUID) -> dict | None:
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_PROCESS_COLUMNS}
        FROM build_processes
        WHERE id = $2 AND pipeline_id = $1
        """,
        pipeline_id,
        process_id,
    )
    return _process_to_dict(row) if row else None


async def add_process(
    pipeline_id: UUID,
    *,
    name: str,
    process_type: str,
    phase: str,
    order: int,
    configuration: dict,
) -> dict:
    """Insert a process. ``position`` comes from its sequence, so it grows."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO build_processes
            (pipeline_id, name, process_type, phase, "order", configuration_json)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {_PROCESS_COLUMNS}
        """,
        pipeline_id,
        name,
        process_type,
        phase,
        order,
        json.dumps(configuration),
        retry=False,
    )
    return _process_to_dict(row)


async def update_process(
    pipeline_id: UUID,
    process_id: UUID,
    *,
    name: str | None = None,
    phase: str | None = None,
    order: int | None = None,
    configuration: dict | None = None,
    is_enabled: bool | None = None,
) -> dict | None:
    """Apply the given fields; None leaves a column unchanged."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        UPDATE build_processes
           SET name               = COALESCE($3, name),
               phase              = COALESCE($4, phase),
               "order"            = COALESCE($5, "order"),
               configuration_json = COALESCE($6, configuration_json),
               is_enabled         = COALESCE($7, is_enabled)
         WHERE id = $2 AND pipeline_id = $1
        RETURNING {_PROCESS_COLUMNS}
        """,
        pipeline_id,
        process_id,
        name,
        phase,
        order,
        json.dumps(configuration) if configuration is not None else None,
        is_enabled,
    )
    return _process_to_dict(row) if row else None


async def delete_process(pipeline_id: UUID, process_id: UUID) -> bool:
    pool = await get_pool()
    result = await pool.execute(
        "DELETE FROM build_processes WHERE id = $2 AND pipeline_id = $1",
        pipeline_id,
        process_id,
    )
    return result != "DELETE 0"


async def reorder_processes(pipeline_id: UUID, process_ids: list[UUID]) -> int:
    """Set ``order`` to each id's index in *process_ids*.

    Ids that are not processes of the pipeline are skipped.  Returns the
    number of rows changed.
    """
    pool = await get_pool()
    result = await pool.execute(
        """
        UPDATE build_processes AS bp
           SET "order" = ids.idx - 1
          FROM unnest($2::uuid[]) WITH ORDINALITY AS ids(id, idx)
         WHERE bp.pipeline_id = $1 AND bp.id = ids.id
        """,
        pipeline_id,
        process_ids,
    )
    return int(result.split()[-1])


def _process_to_dict(row) -> dict:  # noqa: ANN001
    d = dict(row)
    raw = d.pop("configuration_json", None)
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raw = {}
    d["configuration"] = raw if isinstance(raw, dict) else {}
    return d
