"""Initial schema - tasks with fixed or ranged due dates, conversations

Revision ID: 001
Revises: None
Create Date: 2025-10-21

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    # due_at and range_start/range_end are mutually exclusive
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            due_at TEXT,
            range_start TEXT,
            range_end TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            CHECK (due_at IS NULL OR (range_start IS NULL AND range_end IS NULL)),
            CHECK (status IN ('pending', 'done'))
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_created_at ON tasks (created_at)"))

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS conversations (
            id INTEGER PRIMARY KEY,
            title TEXT DEFAULT 'Untitled',
            messages TEXT DEFAULT '[]',
            tracker TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS conversations"))
    conn.execute(text("DROP INDEX IF EXISTS ix_tasks_created_at"))
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
