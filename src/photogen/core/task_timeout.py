"""Per-task timeout guard.

Every task handed to the provider gets a timer.  If no webhook resolves the
task before the timer fires, the guard marks it failed so the client stops
waiting.  Timers are ``asyncio`` tasks on the application's event loop, so
they only exist inside the process that armed them and are lost on restart.
"""

from __future__ import annotations

import asyncio
import logging

from photogen.core.event_log import EventLog
from photogen.core.events import TaskEventHub
from photogen.core.models import ACTIVE_STATUSES, TaskResult
from photogen.core.task_cache import TaskResultCache
from photogen.core.task_store import TaskStore, utc_now

logger = logging.getLogger(__name__)


class TaskTimeoutGuard:
    """Force-fail tasks whose webhook never arrives.

    Args:
        store: Task store used to read and fail tasks.
        event_log: Receives ``task-timeout-*`` events.
        cache: Quick-result cache; timed-out failures are cached like webhook
            failures.
        timeout_seconds: Length of the window.
        events: Optional hub notified when a task times out.
    """

    def __init__(
        self,
        store: TaskStore,
        event_log: EventLog,
        cache: TaskResultCache,
        timeout_seconds: float = 600,
        events: TaskEventHub | None = None,
    ):
        self.store = store
        self.event_log = event_log
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.events = events
        self._timers: dict[str, asyncio.Task] = {}

    @property
    def timeout_message(self) -> str:
        minutes = max(1, round(self.timeout_seconds / 60))
        unit = "minute" if minutes == 1 else "minutes"
        return f"Task timed out after {minutes} {unit} - no response from AI service"

    def set_timeout(self, task_id: str) -> None:
        """Arm (or re-arm) the timer for ``task_id``.

        Must be called from a running event loop.
        """
        self.clear_timeout(task_id, log=False)
        logger.info(f"Setting {self.timeout_seconds}s timeout for task {task_id}")
        self.event_log.add(
            "task-timeout-set", {"taskId": task_id, "timeoutSeconds": self.timeout_seconds}
        )
        self._timers[task_id] = asyncio.get_running_loop().create_task(
            self._expire(task_id), name=f"task-timeout-{task_id}"
        )

    def clear_timeout(self, task_id: str, log: bool = True) -> bool:
        """Cancel the timer for ``task_id``. Returns True if one was active."""
        timer = self._timers.pop(task_id, None)
        if timer is None:
            return False
        timer.cancel()
        if log:
            logger.info(f"Cleared timeout for task {task_id}")
            self.event_log.add("task-timeout-cleared", {"taskId": task_id})
        return True

    def active_count(self) -> int:
        return sum(1 for timer in self._timers.values() if not timer.done())

    def clear_all(self) -> int:
        """Cancel every timer. Returns the number cancelled."""
        count = len(self._timers)
        for task_id, timer in self._timers.items():
            timer.cancel()
            logger.debug(f"Cleared timeout for task {task_id}")
        self._timers.clear()
        if count:
            self.event_log.add("all-timeouts-cleared", {"count": count})
        return count

    async def _expire(self, task_id: str) -> None:
        await asyncio.sleep(self.timeout_seconds)
        if self._timers.get(task_id) is asyncio.current_task():
            del self._timers[task_id]
        await self.expire_now(task_id)

    async def expire_now(self, task_id: str) -> bool:
        """Apply the timeout to ``task_id`` immediately.

        Returns:
            True if the task was still in flight and has been failed.
        """
        logger.warning(f"Task {task_id} timed out after {self.timeout_seconds}s")
        self.event_log.add("task-timeout-triggered", {"taskId": task_id})
        try:
            task = self.store.get_task(task_id)
            if task is None or task.is_terminal:
                state = task.status if task else "not found"
                logger.info(f"Timeout for task {task_id} ignored, task is {state}")
                return False

            message = self.timeout_message
            failed = self.store.update_task(
                task_id,
                only_if_status=ACTIVE_STATUSES,
                status="failed",
                error_message=message,
                processing_time=int(self.timeout_seconds),
                completed_at=utc_now(),
            )
            if not failed:
                logger.info(f"Timeout for task {task_id} ignored, task finished meanwhile")
                return False
            self.cache.cache_result(
                TaskResult(task_id=task_id, status="failed", error_message=message)
            )
            self.event_log.add(
                "task-timeout-failed",
                {
                    "taskId": task_id,
                    "previousStatus": task.status,
                    "message": "Task marked as failed due to timeout",
                },
            )
            if self.events is not None:
                self.events.push_task_update(task_id, "failed", {"state": "timeout"})
            logger.info(f"Task {task_id} marked as failed due to timeout")
            return True
        except Exception as e:
            logger.exception(f"Error handling timeout for task {task_id}")
            self.event_log.add("task-timeout-error", {"taskId": task_id, "error": str(e)})
            return False
