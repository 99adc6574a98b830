"""Build repository -- database reads and writes for the builds and build_logs tables."""

from datetime import datetime
from uuid import UUID

from app.repos.db import get_pool

_BUILD_COLUMNS = """
    b.id, b.project_id, b.build_number, b.branch, b.commit_hash,
    b.scripting_backend, b.build_target, b.status, b.started_at,
    b.completed_at, b.output_path, b.build_size, b.deploy_branch,
    b.deploy_status, b.error_message, b.triggered_by_id, b.created_at
"""

# Denormalised project/user fields used by the job announcement and notifications.
_BUILD_JOIN_COLUMNS = _BUILD_COLUMNS + """,
    p.name AS project_name, p.git_url, p.build_path, p.engine_version,
    p.notification_settings_json, u.username AS triggered_by_username
"""


# ---------------------------------------------------------------------------
# builds
# ---------------------------------------------------------------------------


async def get_next_build_number(project_id: UUID) -> int:
    """Return ``max(build_number) + 1`` for a project (1 for the first build).

    Not atomic against concurrent creates for the same project; the unique
    index on (project_id, build_number) rejects the loser of such a race.
    """
    pool = await get_pool()
    current = await pool.fetchval(
        "SELECT COALESCE(MAX(build_number), 0) FROM builds WHERE project_id = $1",
        project_id,
    )
    return int(current) + 1


async def create_build(
    project_id: UUID,
    build_number: int,
    *,
    branch: str,
    scripting_backend: str,
    deploy_branch: str | None = None,
    triggered_by_id: UUID | None = None,
) -> dict:
    """Insert a new build in ``Queued`` status. Returns the row as a dict.

    Not replayed on a dropped connection; the caller sees the error.
    """
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        INSERT INTO builds (project_id, build_number, branch, scripting_backend,
                            status, deploy_branch, triggered_by_id)
        VALUES ($1, $2, $3, $4, 'Queued', $5, $6)
        RETURNING id, project_id, build_number, branch, commit_hash,
                  scripting_backend, build_target, status, started_at,
                  completed_at, output_path, build_size, deploy_branch,
                  deploy_status, error_message, triggered_by_id, created_at
        """,
        project_id,
        build_number,
        branch,
        scripting_backend,
        deploy_branch,
        triggered_by_id,
        retry=False,
    )
    return dict(row)


async def get_build_by_id(build_id: UUID) -> dict | None:
    """Fetch a single build joined with its project and triggering user."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_BUILD_JOIN_COLUMNS}
        FROM builds b
        JOIN projects p ON p.id = b.project_id
        LEFT JOIN users u ON u.id = b.triggered_by_id
        WHERE b.id = $1
        """,
        build_id,
    )
    return dict(row) if row else None


async def list_builds(
    project_id: UUID | None = None,
    *,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Fetch a page of builds, newest first, plus the total count."""
    pool = await get_pool()
    rows = await pool.fetch(
        f"""
        SELECT {_BUILD_JOIN_COLUMNS}
        FROM builds b
        JOIN projects p ON p.id = b.project_id
        LEFT JOIN users u ON u.id = b.triggered_by_id
        WHERE ($1::uuid IS NULL OR b.project_id = $1)
        ORDER BY b.created_at DESC
        LIMIT $2 OFFSET $3
        """,
        project_id,
        limit,
        offset,
    )
    total = await pool.fetchval(
        "SELECT COUNT(*) FROM builds WHERE ($1::uuid IS NULL OR project_id = $1)",
        project_id,
    )
    return [dict(r) for r in rows], int(total or 0)


async def save_build_state(
    build_id: UUID,
    *,
    status: str,
    error_message: str | None,
    started_at: datetime | None,
    completed_at: datetime | None,
) -> None:
    """Persist the status-related fields of a build exactly as given.

    No concurrency token: the last writer wins.
    """
    pool = await get_pool()
    await pool.execute(
        """
        UPDATE builds
           SET status = $2, error_message = $3, started_at = $4, completed_at = $5
         WHERE id = $1
        """,
        build_id,
        status,
        error_message,
        started_at,
        completed_at,
    )


async def update_commit_hash(build_id: UUID, commit_hash: str | None) -> bool:
    """Set the resolved commit hash. Returns False if the build does not exist."""
    pool = await get_pool()
    result = await pool.execute(
        "UPDATE builds SET commit_hash = $2 WHERE id = $1",
        build_id,
        commit_hash,
    )
    return result != "UPDATE 0"


async def update_build_output(
    build_id: UUID,
    output_path: str | None,
    build_size: int | None,
) -> None:
    """Record the artifact path and size reported by the worker."""
    pool = await get_pool()
    await pool.execute(
        """
        UPDATE builds
           SET output_path = COALESCE($2, output_path),
               build_size  = COALESCE($3, build_size)
         WHERE id = $1
        """,
        build_id,
        output_path,
        build_size,
    )


async def update_deploy_status(
    build_id: UUID,
    deploy_status: str | None,
    error_message: str | None = None,
) -> None:
    """Record the deployment status string (and error, if any)."""
    pool = await get_pool()
    await pool.execute(
        """
        UPDATE builds
           SET deploy_status = $2,
               error_message = COALESCE($3, error_message)
         WHERE id = $1
        """,
        build_id,
        deploy_status,
        error_message,
    )


# ---------------------------------------------------------------------------
# build_logs
# ---------------------------------------------------------------------------


async def append_build_log(
    build_id: UUID,
    level: str,
    message: str,
    stage: str,
) -> dict:
    """Append one log row. Returns the created row.

    Not replayed on a dropped connection, so a line is never stored twice;
    the worker resends it after an ``ok: false`` completion.
    """
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        INSERT INTO build_logs (build_id, level, message, stage)
        VALUES ($1, $2, $3, $4)
        RETURNING id, build_id, timestamp, level, message, stage
        """,
        build_id,
        level,
        message,
        stage,
        retry=False,
    )
    return dict(row)


async def get_build_logs(build_id: UUID) -> list[dict]:
    """Fetch all logs for a build in chronological order.

    Rows sharing a timestamp come back in insertion order.
    """
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, build_id, timestamp, level, message, stage
        FROM build_logs WHERE build_id = $1
        ORDER BY timestamp, seq
        """,
        build_id,
    )
    return [dict(r) for r in rows]
