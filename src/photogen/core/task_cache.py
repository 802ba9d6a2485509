"""Process-local quick-result cache.

When a webhook resolves a task, its outcome is cached here before the task
row is rewritten, so a client polling ``/api/tasks/{id}/quick`` sees the
result as soon as the webhook lands.  Entries expire after a fixed TTL.

The cache lives in one process; a multi-worker deployment only gets hits on
the worker that received the webhook, and clients fall back to the task
store otherwise.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from photogen.core.models import TaskResult

logger = logging.getLogger(__name__)


class TaskResultCache:
    """In-memory map of task id to resolved :class:`TaskResult`.

    Args:
        ttl_seconds: Seconds an entry stays readable after it was cached.
        clock: Time source, injectable for tests.
    """

    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[TaskResult, float]] = {}
        self._lock = threading.Lock()

    def cache_result(self, result: TaskResult) -> None:
        """Store (or replace) the result for ``result.task_id``."""
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            self._entries[result.task_id] = (result, expires_at)
            size = len(self._entries)
        logger.info(f"Cached {result.status} result for task {result.task_id} ({size} cached)")

    def get_result(self, task_id: str) -> TaskResult | None:
        """Return the cached result, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(task_id)
            if entry is None:
                return None
            result, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[task_id]
                logger.debug(f"Cache entry for task {task_id} expired")
                return None
        return result

    def clear_result(self, task_id: str) -> bool:
        """Drop the entry for ``task_id``. Returns True if one existed."""
        with self._lock:
            return self._entries.pop(task_id, None) is not None

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def size(self) -> int:
        """Number of live entries."""
        self.purge_expired()
        with self._lock:
            return len(self._entries)
