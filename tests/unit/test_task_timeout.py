"""Tests for photogen.core.task_timeout - the per-task timeout guard."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from photogen.core.event_log import EventLog
from photogen.core.events import TaskEventHub
from photogen.core.task_cache import TaskResultCache
from photogen.core.task_store import TaskStore
from photogen.core.task_timeout import TaskTimeoutGuard


@pytest.fixture
def store(temp_dir: Path) -> TaskStore:
    return TaskStore(temp_dir / "tasks.db")


def _guard(store: TaskStore, timeout_seconds: float = 600, events=None) -> TaskTimeoutGuard:
    return TaskTimeoutGuard(
        store, EventLog(), TaskResultCache(), timeout_seconds=timeout_seconds, events=events
    )


def _processing_task(store: TaskStore) -> str:
    task_id = store.create_task(user_id="u1", task_type="generate", input_prompt="a cat")
    store.update_task(task_id, status="processing", provider_task_id=f"prov-{task_id}")
    return task_id


def _event_types(guard: TaskTimeoutGuard) -> list[str]:
    return [entry["type"] for entry in guard.event_log.entries()]


class TestTimeoutMessage:
    def test_ten_minutes(self, store: TaskStore):
        assert _guard(store).timeout_message == (
            "Task timed out after 10 minutes - no response from AI service"
        )

    def test_single_minute(self, store: TaskStore):
        assert "after 1 minute -" in _guard(store, timeout_seconds=45).timeout_message


class TestExpireNow:
    """Applying a timeout directly."""

    def test_fails_processing_task(self, store: TaskStore):
        """A processing task is failed, cached and logged."""
        guard = _guard(store)
        task_id = _processing_task(store)

        assert asyncio.run(guard.expire_now(task_id)) is True

        task = store.get_task(task_id)
        assert task.status == "failed"
        assert task.error_message == guard.timeout_message
        assert task.processing_time == 600
        assert task.completed_at is not None
        cached = guard.cache.get_result(task_id)
        assert cached.status == "failed"
        assert "task-timeout-failed" in _event_types(guard)

    def test_leaves_completed_task(self, store: TaskStore):
        """Terminal tasks are never overwritten by a timeout."""
        guard = _guard(store)
        task_id = _processing_task(store)
        store.update_task(task_id, status="completed", output_image_url="/media/x.png")

        assert asyncio.run(guard.expire_now(task_id)) is False
        task = store.get_task(task_id)
        assert task.status == "completed"
        assert task.error_message is None

    def test_task_finished_before_write(self, store: TaskStore, monkeypatch):
        """A task that finishes between the read and the write keeps its result."""
        guard = _guard(store)
        task_id = _processing_task(store)
        original_get = store.get_task

        def get_then_complete(*args, **kwargs):
            task = original_get(*args, **kwargs)
            store.update_task(task_id, status="completed", output_image_url="/media/x.png")
            return task

        monkeypatch.setattr(store, "get_task", get_then_complete)
        assert asyncio.run(guard.expire_now(task_id)) is False

        monkeypatch.undo()
        assert store.get_task(task_id).status == "completed"
        assert guard.cache.get_result(task_id) is None
        assert "task-timeout-failed" not in _event_types(guard)

    def test_missing_task(self, store: TaskStore):
        assert asyncio.run(_guard(store).expire_now("nope")) is False

    def test_notifies_subscribers(self, store: TaskStore):
        async def scenario():
            hub = TaskEventHub()
            guard = _guard(store, events=hub)
            task_id = _processing_task(store)
            queue = hub.subscribe(task_id)
            await guard.expire_now(task_id)
            return queue.get_nowait()

        message = asyncio.run(scenario())
        assert message["update"]["type"] == "failed"
        assert message["update"]["data"] == {"state": "timeout"}


class TestTimers:
    """Arming, firing and clearing timers."""

    def test_timer_fires(self, store: TaskStore):
        """An armed timer fails the task once the window passes."""

        async def scenario():
            guard = _guard(store, timeout_seconds=0.01)
            task_id = _processing_task(store)
            guard.set_timeout(task_id)
            assert guard.active_count() == 1
            await asyncio.sleep(0.1)
            return guard, task_id

        guard, task_id = asyncio.run(scenario())
        assert store.get_task(task_id).status == "failed"
        assert guard.active_count() == 0
        assert _event_types(guard)[:3] == [
            "task-timeout-failed",
            "task-timeout-triggered",
            "task-timeout-set",
        ]

    def test_cleared_timer_does_not_fire(self, store: TaskStore):
        async def scenario():
            guard = _guard(store, timeout_seconds=0.01)
            task_id = _processing_task(store)
            guard.set_timeout(task_id)
            assert guard.clear_timeout(task_id) is True
            await asyncio.sleep(0.05)
            return guard, task_id

        guard, task_id = asyncio.run(scenario())
        assert store.get_task(task_id).status == "processing"
        assert "task-timeout-cleared" in _event_types(guard)
        assert guard.clear_timeout(task_id) is False

    def test_rearm_replaces_timer(self, store: TaskStore):
        async def scenario():
            guard = _guard(store, timeout_seconds=60)
            task_id = _processing_task(store)
            guard.set_timeout(task_id)
            guard.set_timeout(task_id)
            count = guard.active_count()
            guard.clear_all()
            return count

        assert asyncio.run(scenario()) == 1

    def test_clear_all(self, store: TaskStore):
        async def scenario():
            guard = _guard(store, timeout_seconds=60)
            for _ in range(3):
                guard.set_timeout(_processing_task(store))
            cleared = guard.clear_all()
            return guard, cleared

        guard, cleared = asyncio.run(scenario())
        assert cleared == 3
        assert guard.active_count() == 0
        assert _event_types(guard)[0] == "all-timeouts-cleared"

    def test_clear_all_without_timers_is_silent(self, store: TaskStore):
        guard = _guard(store)
        assert guard.clear_all() == 0
        assert _event_types(guard) == []
