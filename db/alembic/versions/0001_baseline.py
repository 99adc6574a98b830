"""Baseline schema -- users, projects, builds, logs, pipelines, settings.

Revision ID: 0001_baseline
Revises: None
Create Date: 2026-10-17

Idempotent (IF NOT EXISTS everywhere) so it can run against a database
that was created by hand.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # -- users / projects -----------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            username        VARCHAR(100) NOT NULL UNIQUE,
            email           VARCHAR(255) NOT NULL UNIQUE,
            password_hash   TEXT NOT NULL,
            role            VARCHAR(20) NOT NULL DEFAULT 'Developer',
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id                          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name                        VARCHAR(255) NOT NULL,
            description                 TEXT,
            git_url                     TEXT NOT NULL,
            default_branch              VARCHAR(255) NOT NULL DEFAULT 'main',
            engine_version              VARCHAR(50) NOT NULL,
            build_path                  TEXT,
            notification_settings_json  TEXT,
            is_active                   BOOLEAN NOT NULL DEFAULT true,
            created_at                  TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    # -- builds ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS builds (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            project_id          UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            build_number        INTEGER NOT NULL,
            branch              VARCHAR(255) NOT NULL,
            commit_hash         VARCHAR(64),
            scripting_backend   VARCHAR(20) NOT NULL DEFAULT 'IL2CPP',
            build_target        VARCHAR(50) NOT NULL DEFAULT 'StandaloneWindows64',
            status              VARCHAR(20) NOT NULL DEFAULT 'Queued',
            started_at          TIMESTAMPTZ,
            completed_at        TIMESTAMPTZ,
            output_path         TEXT,
            build_size          BIGINT,
            deploy_branch       VARCHAR(255),
            deploy_status       VARCHAR(100),
            error_message       TEXT,
            triggered_by_id     UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_builds_project_number "
        "ON builds(project_id, build_number)"
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_builds_status ON builds(status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_builds_created_at ON builds(created_at DESC)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS build_logs (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            build_id    UUID NOT NULL REFERENCES builds(id) ON DELETE CASCADE,
            timestamp   TIMESTAMPTZ NOT NULL DEFAULT now(),
            level       VARCHAR(10) NOT NULL,
            message     TEXT NOT NULL,
            stage       VARCHAR(10) NOT NULL
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_build_logs_build_ts "
        "ON build_logs(build_id, timestamp)"
    )

    # -- pipelines ------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS build_pipelines (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name        VARCHAR(255) NOT NULL,
            description TEXT,
            project_id  UUID REFERENCES projects(id) ON DELETE CASCADE,
            is_default  BOOLEAN NOT NULL DEFAULT false,
            is_active   BOOLEAN NOT NULL DEFAULT true,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at  TIMESTAMPTZ
        )
    """)

    # position records insertion order; it breaks ties on "order".
    op.execute("""
        CREATE TABLE IF NOT EXISTS build_processes (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            pipeline_id         UUID NOT NULL REFERENCES build_pipelines(id) ON DELETE CASCADE,
            name                VARCHAR(255) NOT NULL,
            process_type        VARCHAR(30) NOT NULL,
            phase               VARCHAR(10) NOT NULL,
            "order"             INTEGER NOT NULL DEFAULT 0,
            configuration_json  TEXT NOT NULL DEFAULT '{}',
            is_enabled          BOOLEAN NOT NULL DEFAULT true,
            position            BIGSERIAL,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_build_processes_pipeline "
        "ON build_processes(pipeline_id, position)"
    )

    # -- key/value settings (global notification config lives here) ----------
    op.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key         VARCHAR(100) PRIMARY KEY,
            value       TEXT NOT NULL,
            updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)


def downgrade() -> None:
    """Drop all application tables in reverse dependency order."""
    op.execute("DROP TABLE IF EXISTS settings CASCADE")
    op.execute("DROP TABLE IF EXISTS build_processes CASCADE")
    op.execute("DROP TABLE IF EXISTS build_pipelines CASCADE")
    op.execute("DROP TABLE IF EXISTS build_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS builds CASCADE")
    op.execute("DROP TABLE IF EXISTS projects CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
