import json
import logging
import os
import re
import sqlite3
import subprocess
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Union

import config
from errors import StoreUnavailable, TargetNotFound
from models import FixedDue, RangeDue, SearchHit, Task, isoformat
from tracker import Tracker, decode_tracker, encode_tracker

logger = logging.getLogger(__name__)

DATABASE_PATH = config.DATABASE_PATH

TASK_FIELDS = ("name", "description", "status", "due")


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize database by running Alembic migrations."""
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    env = dict(os.environ, TASKS_DB_PATH=os.path.abspath(DATABASE_PATH))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        env=env,
        check=True
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _due_columns(due: Optional[Union[FixedDue, RangeDue]]) -> tuple:
    """Map the due union onto (due_at, range_start, range_end); unused columns are NULL."""
    if isinstance(due, FixedDue):
        return isoformat(due.at), None, None
    if isinstance(due, RangeDue):
        return None, isoformat(due.start), isoformat(due.end)
    return None, None, None


def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    due = None
    if row["due_at"]:
        due = FixedDue(at=row["due_at"])
    elif row["range_start"] and row["range_end"]:
        due = RangeDue(start=row["range_start"], end=row["range_end"])
    return Task(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        due=due,
        status=row["status"] or "pending",
        created_at=row["created_at"],
    )


def get_all_tasks() -> list[Task]:
    """All tasks, newest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM tasks ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
        return [_row_to_task(row) for row in rows]


def get_task_db(task_id: str) -> Optional[Task]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None


def create_task_db(
    task_id: str,
    name: str,
    description: Optional[str] = None,
    due: Optional[Union[FixedDue, RangeDue]] = None,
    status: str = "pending",
) -> Task:
    """Insert a task. The due union is written as a single column group."""
    created_at = _now()
    due_at, range_start, range_end = _due_columns(due)

    with get_db() as conn:
        conn.execute(
            """INSERT INTO tasks
               (id, name, description, due_at, range_start, range_end, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (task_id, name, description, due_at, range_start, range_end, status, created_at)
        )
        conn.commit()

    return Task(
        id=task_id,
        name=name,
        description=description,
        due=due,
        status=status,
        created_at=created_at,
    )


def update_task_db(task_id: str, **updates) -> Optional[Task]:
    """
    Update a task with any fields provided.
    Only updates fields that differ from current values.

    Args:
        task_id: Task ID to update
        **updates: name, description, status, due. Passing due (even None)
            rewrites due_at, range_start and range_end together.
    """
    unknown = set(updates) - set(TASK_FIELDS)
    if unknown:
        raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if not row:
            return None

        columns = {k: v for k, v in updates.items() if k != "due"}
        if "due" in updates:
            due_at, range_start, range_end = _due_columns(updates["due"])
            columns.update(due_at=due_at, range_start=range_start, range_end=range_end)

        # Filter updates: only include fields that differ from current values
        changes = {field: value for field, value in columns.items() if row[field] != value}

        if changes:
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            values = list(changes.values()) + [task_id]
            conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ?", values)
            conn.commit()

        updated_row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(updated_row)


def delete_task_db(task_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        conn.commit()
        return cursor.rowcount > 0


def _terms(text: str) -> set[str]:
    return set(re.findall(r"\w+", text.lower()))


def search_tasks_db(query: str, limit: int = 10, min_score: Optional[float] = None) -> list[SearchHit]:
    """
    Rank tasks by how many query terms appear in name + description.
    Score is the matched fraction of query terms; tasks below `min_score`
    (config.SEARCH_MATCH_THRESHOLD by default) are dropped. Ties go to the
    newest task.
    """
    if min_score is None:
        min_score = config.SEARCH_MATCH_THRESHOLD
    query_terms = _terms(query)
    if not query_terms:
        return []

    with get_db() as conn:
        rows = conn.execute(
            "SELECT id, name, description FROM tasks ORDER BY created_at DESC, rowid DESC"
        ).fetchall()

    hits = []
    for row in rows:
        task_terms = _terms(f"{row['name']} {row['description'] or ''}")
        score = len(query_terms & task_terms) / len(query_terms)
        if score > 0 and score >= min_score:
            hits.append(SearchHit(id=row["id"], score=round(score, 4)))
    # Stable sort keeps the newest-first row order within a score
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:limit]



# Conversation operations
def new_conversation() -> int:
    """Create a new empty conversation and return its id."""
    now = _now()
    with get_db() as conn:
        cursor = conn.execute(
            "INSERT INTO conversations (title, messages, tracker, created_at, updated_at) VALUES ('Untitled', '[]', ?, ?, ?)",
            (encode_tracker(None), now, now)
        )
        conn.commit()
        return cursor.lastrowid


def get_conversation(conversation_id: int) -> Optional[dict]:
    """Return {"id", "title", "messages", "tracker"} or None."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, title, messages, tracker FROM conversations WHERE id = ?",
            (conversation_id,)
        ).fetchone()
    if not row:
        return None
    return {
        "id": row["id"],
        "title": row["title"],
        "messages": json.loads(row["messages"] or "[]"),
        "tracker": decode_tracker(row["tracker"]),
    }


def save_conversation(conversation_id: int, messages: list[dict], tracker: Optional[Tracker]) -> bool:
    """Save messages and the carried tracker. Auto-titles from the first user message."""
    now = _now()
    first_user = next((m["content"] for m in messages if m.get("role") == "user"), None)
    with get_db() as conn:
        row = conn.execute("SELECT title FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        if not row:
            return False
        title = row["title"]
        if title == "Untitled" and first_user:
            title = first_user[:50]
        conn.execute(
            "UPDATE conversations SET messages = ?, tracker = ?, title = ?, updated_at = ? WHERE id = ?",
            (json.dumps(messages), encode_tracker(tracker), title, now, conversation_id)
        )
        conn.commit()
        return True


class TaskStore:
    """
    Store interface consumed by the dispatcher and the API.

    Each mutating method is a single statement against one row. SQLite errors
    surface as StoreUnavailable; missing rows on update/delete as TargetNotFound.
    """

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        due: Optional[Union[FixedDue, RangeDue]] = None,
        status: str = "pending",
    ) -> Task:
        return self._call(create_task_db, str(uuid.uuid4()), name, description, due, status)

    def get(self, task_id: str) -> Optional[Task]:
        return self._call(get_task_db, task_id)

    def update(self, task_id: str, **changes) -> Task:
        task = self._call(update_task_db, task_id, **changes)
        if task is None:
            raise TargetNotFound(task_id)
        return task

    def delete(self, task_id: str) -> None:
        if not self._call(delete_task_db, task_id):
            raise TargetNotFound(task_id)

    def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        return self._call(search_tasks_db, query, limit)

    @staticmethod
    def _call(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except sqlite3.Error as e:
            logger.error("Task store call %s failed: %s", fn.__name__, e)
            raise StoreUnavailable(f"Task store error: {e}", cause=e) from e

    def list(self) -> list[Task]:
        return self._call(get_all_tasks)
