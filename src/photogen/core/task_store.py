"""SQLite task store for image generation tasks.

One ``tasks`` table holds every task, keyed by the internal task id and
indexed by the provider's task id so webhook callbacks can be resolved.
List-valued and dict-valued columns are stored as JSON text.

Every public method opens its own short-lived connection, which keeps the
store safe to share between request handlers and background steps running
on different threads.  Low-level ``sqlite3`` failures are re-raised as
:class:`~photogen.core.errors.DatabaseError`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from photogen.core.errors import DatabaseError
from photogen.core.models import TASK_STATUSES, TaskRecord, TaskStats

logger = logging.getLogger(__name__)

# Columns a caller may change through ``update_task``.
_UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "input_image_url",
        "input_image_urls",
        "input_prompt",
        "input_params",
        "output_image_url",
        "output_image_urls",
        "provider_task_id",
        "processing_time",
        "error_message",
        "completed_at",
    }
)
_JSON_FIELDS = frozenset({"input_image_urls", "input_params", "output_image_urls"})


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class TaskStore:
    """CRUD over the ``tasks`` table.

    Args:
        db_path: Path to the SQLite database file.  Parent directories are
            created if missing.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized task database at {self.db_path}")

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing on success.

        Args:
            operation: Short description used in the error message.

        Raises:
            DatabaseError: If SQLite reports any error.
        """
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to {operation}: {e}", "CONNECT_FAILED") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Database error during {operation}: {e}")
            raise DatabaseError(
                f"Failed to {operation}: {e}",
                type(e).__name__.upper(),
                {"operation": operation},
            ) from e
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect("initialize schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    task_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    input_image_url TEXT,
                    input_image_urls TEXT NOT NULL DEFAULT '[]',
                    input_prompt TEXT NOT NULL,
                    input_params TEXT NOT NULL DEFAULT '{}',
                    output_image_url TEXT,
                    output_image_urls TEXT NOT NULL DEFAULT '[]',
                    provider_task_id TEXT UNIQUE,
                    processing_time INTEGER,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_user_created
                ON tasks(user_id, created_at DESC)
                """)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TaskRecord:
        data = dict(row)
        for name in _JSON_FIELDS:
            raw = data.get(name)
            data[name] = json.loads(raw) if raw else ([] if name != "input_params" else {})
        return TaskRecord(**data)

    @staticmethod
    def _encode(name: str, value: Any) -> Any:
        if name in _JSON_FIELDS:
            return json.dumps(value if value is not None else ({} if name == "input_params" else []))
        return value

    def create_task(
        self,
        *,
        user_id: str,
        task_type: str,
        input_prompt: str,
        status: str = "pending",
        input_image_url: str | None = None,
        input_image_urls: list[str] | None = None,
        input_params: dict[str, Any] | None = None,
        provider_task_id: str | None = None,
    ) -> str:
        """Insert a new task row.

        Args:
            user_id: Owner of the task.
            task_type: ``generate``, ``edit`` or ``enhance``.
            input_prompt: The user's prompt.
            status: Initial status, ``pending`` unless stated otherwise.
            input_image_url: Primary input image for edit tasks.
            input_image_urls: Every input image for edit tasks.
            input_params: Free-form generation parameters.
            provider_task_id: Provider job id, when already known.

        Returns:
            The new task id.
        """
        task_id = str(uuid.uuid4())
        now = utc_now()
        logger.info(
            f"Creating task {task_id} for user {user_id} "
            f"({task_type}, prompt: {input_prompt[:50]!r})"
        )
        with self._connect("create task") as conn:
            conn.execute(
                """
                INSERT INTO tasks (
                    id, user_id, task_type, status, input_image_url,
                    input_image_urls, input_prompt, input_params,
                    provider_task_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    user_id,
                    task_type,
                    status,
                    input_image_url,
                    json.dumps(input_image_urls or []),
                    input_prompt,
                    json.dumps(input_params or {}),
                    provider_task_id,
                    now,
                    now,
                ),
            )
        return task_id

    def update_task(
        self,
        task_id: str,
        *,
        only_if_status: Iterable[str] | None = None,
        **updates: Any,
    ) -> bool:
        """Update only the provided fields of a task.

        The status check and the write happen in one ``UPDATE`` statement, so
        a task that reached a final state in the meantime is left untouched.

        Args:
            task_id: Internal task id.
            only_if_status: When given, write only if the task's current
                status is one of these.
            **updates: Column values to write.

        Returns:
            True if a row was updated, False if the task does not exist or
            its status did not match ``only_if_status``.

        Raises:
            ValueError: If an unknown or read-only field is supplied.
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")
        if not updates:
            return self.get_task(task_id) is not None

        logger.debug(f"Updating task {task_id}: {sorted(updates)}")
        columns = ", ".join(f"{name} = ?" for name in updates)
        values = [self._encode(name, value) for name, value in updates.items()]
        query = f"UPDATE tasks SET {columns}, updated_at = ? WHERE id = ?"
        params: list[Any] = [*values, utc_now(), task_id]
        if only_if_status is not None:
            statuses = list(only_if_status)
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)

        with self._connect("update task") as conn:
            cursor = conn.execute(query, params)
            updated = cursor.rowcount > 0
        if not updated:
            if only_if_status is None:
                logger.warning(f"Update skipped, task {task_id} not found")
            else:
                logger.info(f"Update skipped, task {task_id} is no longer {'/'.join(statuses)}")
        return updated

    def get_task(self, task_id: str, user_id: str | None = None) -> TaskRecord | None:
        """Fetch a single task, optionally scoped to its owner."""
        query = "SELECT * FROM tasks WHERE id = ?"
        params: tuple[Any, ...] = (task_id,)
        if user_id:
            query += " AND user_id = ?"
            params = (task_id, user_id)
        with self._connect("get task") as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            logger.debug(f"Task {task_id} not found")
            return None
        return self._row_to_record(row)

    def get_task_by_provider_id(self, provider_task_id: str) -> TaskRecord | None:
        """Fetch the local task matching a provider job id."""
        with self._connect("get task by provider id") as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE provider_task_id = ?",
                (provider_task_id,),
            ).fetchone()
        if row is None:
            logger.info(f"No task found for provider id {provider_task_id}")
            return None
        return self._row_to_record(row)

    def get_user_tasks(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        status: str | None = None,
    ) -> list[TaskRecord]:
        """List a user's tasks, newest first."""
        query = "SELECT * FROM tasks WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._connect("get user tasks") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_recent_tasks(self, limit: int = 10, user_id: str | None = None) -> list[TaskRecord]:
        """List the most recent tasks across all users (or one user)."""
        if user_id:
            return self.get_user_tasks(user_id, limit=limit)
        with self._connect("get recent tasks") as conn:
            rows = conn.execute(
                "SELECT * FROM tasks ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_user_tasks(self, user_id: str, status: str | None = None) -> int:
        """Count a user's tasks, optionally filtered by status."""
        query = "SELECT COUNT(*) FROM tasks WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        with self._connect("count user tasks") as conn:
            return conn.execute(query, params).fetchone()[0]

    def get_task_stats(self, user_id: str) -> TaskStats:
        """Return per-status task counts for a user."""
        with self._connect("get task stats") as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM tasks WHERE user_id = ? GROUP BY status",
                (user_id,),
            ).fetchall()
        counts = {row["status"]: row["n"] for row in rows}
        stats = TaskStats(
            total=sum(counts.values()),
            **{status: counts.get(status, 0) for status in TASK_STATUSES},
        )
        logger.debug(f"Task stats for user {user_id}: {stats}")
        return stats

    def delete_task(self, task_id: str, user_id: str) -> bool:
        """Delete a task owned by ``user_id``.

        Returns:
            True if a row was deleted.
        """
        with self._connect("delete task") as conn:
            cursor = conn.execute(
                "DELETE FROM tasks WHERE id = ? AND user_id = ?",
                (task_id, user_id),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Task {task_id} deleted")
        return deleted

    def cleanup_old_failed_tasks(self, days_old: int = 7) -> int:
        """Delete failed tasks created more than ``days_old`` days ago.

        Returns:
            Number of tasks removed.
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days_old)).isoformat()
        with self._connect("clean up old failed tasks") as conn:
            cursor = conn.execute(
                "DELETE FROM tasks WHERE status = 'failed' AND created_at < ?",
                (cutoff,),
            )
            count = cursor.rowcount
        logger.info(f"Cleaned up {count} old failed tasks")
        return count

    def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connect("health check") as conn:
                conn.execute("SELECT id FROM tasks LIMIT 1").fetchall()
            return True
        except DatabaseError as e:
            logger.error(f"Database health check failed: {e}")
            return False
