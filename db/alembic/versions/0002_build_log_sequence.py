"""Insertion sequence on build_logs.

Revision ID: 0002_build_log_sequence
Revises: 0001_baseline
Create Date: 2026-10-17

Lines written in the same clock tick share a timestamp; ``seq`` keeps
them in the order they were stored.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_build_log_sequence"
down_revision: Union[str, None] = "0001_baseline"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TABLE build_logs ADD COLUMN IF NOT EXISTS seq BIGSERIAL")
    op.execute("DROP INDEX IF EXISTS idx_build_logs_build_ts")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_build_logs_build_ts_seq "
        "ON build_logs(build_id, timestamp, seq)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_build_logs_build_ts_seq")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_build_logs_build_ts "
        "ON build_logs(build_id, timestamp)"
    )
    op.execute("ALTER TABLE build_logs DROP COLUMN IF EXISTS seq")
