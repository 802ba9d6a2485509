"""Server-sent event fan-out for task updates.

A browser that opens ``/api/events/{task_id}`` subscribes a queue here.  The
webhook receiver and the timeout guard push updates into every queue for
that task, and :meth:`TaskEventHub.stream` turns a queue into
``text/event-stream`` frames.

The hub is bound to the event loop it is used from.  All methods must be
called from that loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

# Update types that end a task's stream.
_FINAL_UPDATES = frozenset({"completed", "failed"})


def format_sse(payload: dict[str, Any]) -> str:
    """Encode one payload as a server-sent event frame."""
    return f"data: {json.dumps(payload)}\n\n"


class TaskEventHub:
    """Per-task subscriber queues.

    Args:
        heartbeat_seconds: Interval between heartbeat frames on idle streams.
        max_stream_seconds: Hard cap on how long one stream stays open.
    """

    def __init__(self, heartbeat_seconds: float = 30.0, max_stream_seconds: float = 600.0):
        self.heartbeat_seconds = heartbeat_seconds
        self.max_stream_seconds = max_stream_seconds
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, task_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(task_id, []).append(queue)
        return queue

    def unsubscribe(self, task_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(task_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[task_id]

    def push_task_update(self, task_id: str, update_type: str, data: dict[str, Any]) -> bool:
        """Deliver an update to every subscriber of ``task_id``.

        Args:
            task_id: Internal task id.
            update_type: ``status``, ``progress``, ``completed`` or ``failed``.
            data: Update body.

        Returns:
            True if at least one subscriber received the update.
        """
        queues = self._subscribers.get(task_id)
        if not queues:
            logger.debug(f"No event subscribers for task {task_id}")
            return False
        message = {
            "type": "task_update",
            "taskId": task_id,
            "update": {"type": update_type, "data": data},
            "timestamp": int(time.time() * 1000),
        }
        for queue in queues:
            queue.put_nowait(message)
        logger.info(f"Pushed {update_type} update for task {task_id} to {len(queues)} subscriber(s)")
        return True

    def connection_count(self) -> int:
        return sum(len(queues) for queues in self._subscribers.values())

    def close_all(self) -> int:
        """Signal every open stream to finish. Returns the number closed."""
        count = 0
        for queues in self._subscribers.values():
            for queue in queues:
                queue.put_nowait(None)
                count += 1
        self._subscribers.clear()
        return count

    async def stream(self, task_id: str) -> AsyncIterator[str]:
        """Yield SSE frames for ``task_id`` until it resolves or times out."""
        queue = self.subscribe(task_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_stream_seconds
        try:
            yield format_sse({"type": "connected", "taskId": task_id})
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    message = await asyncio.wait_for(
                        queue.get(), timeout=min(self.heartbeat_seconds, remaining)
                    )
                except asyncio.TimeoutError:
                    if loop.time() < deadline:
                        yield format_sse(
                            {"type": "heartbeat", "timestamp": int(time.time() * 1000)}
                        )
                    continue
                if message is None:
                    break
                yield format_sse(message)
                if message["update"]["type"] in _FINAL_UPDATES:
                    break
        finally:
            self.unsubscribe(task_id, queue)
