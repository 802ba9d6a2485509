"""Tests for photogen.core.task_store - SQLite task persistence.

Tests cover:
- Task creation with JSON-encoded list/dict columns.
- Partial updates and the updatable-field whitelist.
- Owner scoping for reads and deletes.
- Provider id lookup, listing, counting and per-status stats.
- Cleanup of old failed tasks and the health check.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from photogen.core.errors import DatabaseError
from photogen.core.task_store import TaskStore


@pytest.fixture
def store(temp_dir: Path) -> TaskStore:
    return TaskStore(temp_dir / "tasks.db")


def _create(store: TaskStore, user_id: str = "user-1", **kwargs) -> str:
    kwargs.setdefault("task_type", "generate")
    kwargs.setdefault("input_prompt", "a lighthouse at dusk")
    return store.create_task(user_id=user_id, **kwargs)


class TestCreateTask:
    """Test TaskStore.create_task."""

    def test_new_task_is_pending(self, store: TaskStore):
        """A task is created pending with timestamps set."""
        task = store.get_task(_create(store))
        assert task is not None
        assert task.status == "pending"
        assert task.created_at == task.updated_at
        assert task.completed_at is None
        assert task.output_image_urls == []

    def test_json_columns_round_trip(self, store: TaskStore):
        """List and dict inputs come back as Python values."""
        task_id = _create(
            store,
            task_type="edit",
            input_image_url="https://img.test/a.png",
            input_image_urls=["https://img.test/a.png", "https://img.test/b.png"],
            input_params={"strength": 0.5, "seed": 7},
        )
        task = store.get_task(task_id)
        assert task.input_image_urls == ["https://img.test/a.png", "https://img.test/b.png"]
        assert task.input_params == {"strength": 0.5, "seed": 7}

    def test_ids_are_unique(self, store: TaskStore):
        assert _create(store) != _create(store)

    def test_duplicate_provider_id_raises(self, store: TaskStore):
        """provider_task_id is unique across tasks."""
        _create(store, provider_task_id="prov-1")
        with pytest.raises(DatabaseError):
            _create(store, provider_task_id="prov-1")


class TestUpdateTask:
    """Test TaskStore.update_task."""

    def test_updates_only_given_fields(self, store: TaskStore):
        """Unmentioned fields keep their values; updated_at moves."""
        task_id = _create(store)
        before = store.get_task(task_id)
        assert store.update_task(task_id, status="processing", provider_task_id="prov-9")
        after = store.get_task(task_id)
        assert after.status == "processing"
        assert after.provider_task_id == "prov-9"
        assert after.input_prompt == before.input_prompt
        assert after.updated_at >= before.updated_at

    def test_output_urls_encoded(self, store: TaskStore):
        task_id = _create(store)
        store.update_task(task_id, output_image_urls=["/media/a.png", "/media/b.png"])
        assert store.get_task(task_id).output_image_urls == ["/media/a.png", "/media/b.png"]

    def test_unknown_task_returns_false(self, store: TaskStore):
        assert store.update_task("missing", status="failed") is False

    def test_rejects_read_only_fields(self, store: TaskStore):
        """id, user_id and created_at cannot be changed."""
        task_id = _create(store)
        with pytest.raises(ValueError, match="user_id"):
            store.update_task(task_id, user_id="someone-else")

    def test_conditional_update_matches_status(self, store: TaskStore):
        task_id = _create(store)
        assert store.update_task(
            task_id, only_if_status=("pending", "processing"), status="processing"
        )
        assert store.get_task(task_id).status == "processing"

    def test_conditional_update_skips_finished_task(self, store: TaskStore):
        """A finished task is left alone when its status is not allowed."""
        task_id = _create(store)
        store.update_task(task_id, status="failed", error_message="Cancelled by user")
        before = store.get_task(task_id)

        updated = store.update_task(
            task_id,
            only_if_status=("pending", "processing"),
            status="completed",
            output_image_url="/media/a.png",
        )
        assert updated is False
        after = store.get_task(task_id)
        assert after.status == "failed"
        assert after.output_image_url is None
        assert after.updated_at == before.updated_at


class TestQueries:
    """Lookups, listings and counts."""

    def test_owner_scoping(self, store: TaskStore):
        """A user id that does not own the task hides it."""
        task_id = _create(store, user_id="owner")
        assert store.get_task(task_id, "owner") is not None
        assert store.get_task(task_id, "intruder") is None

    def test_get_by_provider_id(self, store: TaskStore):
        task_id = _create(store, provider_task_id="prov-42")
        assert store.get_task_by_provider_id("prov-42").id == task_id
        assert store.get_task_by_provider_id("prov-unknown") is None

    def test_user_tasks_newest_first(self, store: TaskStore):
        """Listings are ordered newest first and paginate with offset."""
        ids = [_create(store, input_prompt=f"prompt {i}") for i in range(5)]
        _create(store, user_id="other")
        tasks = store.get_user_tasks("user-1", limit=2, offset=1)
        assert [t.id for t in tasks] == [ids[3], ids[2]]

    def test_status_filter_and_count(self, store: TaskStore):
        first = _create(store)
        _create(store)
        store.update_task(first, status="completed")
        completed = store.get_user_tasks("user-1", status="completed")
        assert [t.id for t in completed] == [first]
        assert store.count_user_tasks("user-1") == 2
        assert store.count_user_tasks("user-1", status="pending") == 1

    def test_recent_tasks_across_users(self, store: TaskStore):
        _create(store, user_id="a")
        newest = _create(store, user_id="b")
        recent = store.get_recent_tasks(limit=1)
        assert [t.id for t in recent] == [newest]

    def test_stats(self, store: TaskStore):
        """Stats count every status, including zero buckets."""
        done = _create(store)
        failed = _create(store)
        _create(store)
        store.update_task(done, status="completed")
        store.update_task(failed, status="failed")
        stats = store.get_task_stats("user-1")
        assert stats.total == 3
        assert stats.completed == 1
        assert stats.failed == 1
        assert stats.pending == 1
        assert stats.processing == 0


class TestDeleteAndCleanup:
    """Deletion and maintenance."""

    def test_delete_requires_owner(self, store: TaskStore):
        task_id = _create(store, user_id="owner")
        assert store.delete_task(task_id, "intruder") is False
        assert store.delete_task(task_id, "owner") is True
        assert store.get_task(task_id) is None

    def test_cleanup_removes_only_old_failed(self, store: TaskStore, temp_dir: Path):
        """Only failed tasks older than the cutoff are removed."""
        old_failed = _create(store)
        old_completed = _create(store)
        new_failed = _create(store)
        for task_id in (old_failed, new_failed):
            store.update_task(task_id, status="failed")
        store.update_task(old_completed, status="completed")

        old = (datetime.now(timezone.utc) - timedelta(days=10)).isoformat()
        conn = sqlite3.connect(temp_dir / "tasks.db")
        with conn:
            conn.execute(
                "UPDATE tasks SET created_at = ? WHERE id IN (?, ?)",
                (old, old_failed, old_completed),
            )
        conn.close()

        assert store.cleanup_old_failed_tasks(days_old=7) == 1
        assert store.get_task(old_failed) is None
        assert store.get_task(old_completed) is not None
        assert store.get_task(new_failed) is not None

    def test_health_check(self, store: TaskStore):
        assert store.health_check() is True
