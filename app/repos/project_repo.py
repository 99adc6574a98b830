"""Project repository -- read access to the projects table.

Project CRUD lives in a separate service; the build core only needs to
resolve a project and its notification override.
"""

from uuid import UUID

from app.repos.db import get_pool


async def get_project_by_id(project_id: UUID) -> dict | None:
    """Fetch a project by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT id, name, description, git_url, default_branch, engine_version,
               build_path, notification_settings_json, is_active, created_at
        FROM projects WHERE id = $1
        """,
        project_id,
    )
    return dict(row) if row else None

