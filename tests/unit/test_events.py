"""Tests for photogen.core.events - server-sent event fan-out.

Async behaviour is driven with ``asyncio.run`` so no pytest plugin is needed.
"""

from __future__ import annotations

import asyncio
import json

from photogen.core.events import TaskEventHub, format_sse


def _decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


class TestFormatSse:
    def test_frame_layout(self):
        assert format_sse({"a": 1}) == 'data: {"a": 1}\n\n'


class TestPushTaskUpdate:
    """Delivery to subscriber queues."""

    def test_no_subscribers(self):
        hub = TaskEventHub()
        assert hub.push_task_update("task-1", "status", {}) is False

    def test_message_shape(self):
        """Every subscriber of the task gets the wrapped update."""

        async def scenario():
            hub = TaskEventHub()
            first = hub.subscribe("task-1")
            second = hub.subscribe("task-1")
            other = hub.subscribe("task-2")
            assert hub.push_task_update("task-1", "completed", {"state": "success"})
            return first.get_nowait(), second.qsize(), other.qsize(), hub.connection_count()

        message, second_size, other_size, connections = asyncio.run(scenario())
        assert message["type"] == "task_update"
        assert message["taskId"] == "task-1"
        assert message["update"] == {"type": "completed", "data": {"state": "success"}}
        assert isinstance(message["timestamp"], int)
        assert second_size == 1
        assert other_size == 0
        assert connections == 3

    def test_unsubscribe(self):
        hub = TaskEventHub()
        queue = hub.subscribe("task-1")
        hub.unsubscribe("task-1", queue)
        assert hub.connection_count() == 0
        assert hub.push_task_update("task-1", "status", {}) is False


class TestStream:
    """The SSE generator."""

    def test_stream_ends_on_final_update(self):
        """connected frame, then updates until completed/failed."""

        async def scenario():
            hub = TaskEventHub(heartbeat_seconds=5)
            frames = []

            async def consume():
                async for frame in hub.stream("task-1"):
                    frames.append(_decode(frame))

            consumer = asyncio.create_task(consume())
            await asyncio.sleep(0)
            hub.push_task_update("task-1", "status", {"state": "processing"})
            hub.push_task_update("task-1", "completed", {"state": "success"})
            await asyncio.wait_for(consumer, timeout=2)
            return frames, hub.connection_count()

        frames, connections = asyncio.run(scenario())
        assert frames[0] == {"type": "connected", "taskId": "task-1"}
        assert [f["update"]["type"] for f in frames[1:]] == ["status", "completed"]
        assert connections == 0

    def test_heartbeat_when_idle(self):
        """An idle stream emits heartbeats until its deadline."""

        async def scenario():
            hub = TaskEventHub(heartbeat_seconds=0.01, max_stream_seconds=0.05)
            return [_decode(frame) async for frame in hub.stream("task-1")]

        frames = asyncio.run(scenario())
        assert frames[0]["type"] == "connected"
        assert any(f["type"] == "heartbeat" for f in frames[1:])

    def test_close_all_ends_streams(self):
        async def scenario():
            hub = TaskEventHub(heartbeat_seconds=5)
            frames = []

            async def consume():
                async for frame in hub.stream("task-1"):
                    frames.append(frame)

            consumer = asyncio.create_task(consume())
            await asyncio.sleep(0)
            closed = hub.close_all()
            await asyncio.wait_for(consumer, timeout=2)
            return closed, len(frames)

        closed, frame_count = asyncio.run(scenario())
        assert closed == 1
        assert frame_count == 1
