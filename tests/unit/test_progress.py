"""Tests for photogen.core.progress - progress estimation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from photogen.core.models import TaskRecord
from photogen.core.progress import build_task_progress, elapsed_seconds, status_message

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _task(status: str = "processing", age: float = 0, **kwargs) -> TaskRecord:
    created = (NOW - timedelta(seconds=age)).isoformat()
    return TaskRecord(
        id="task-1",
        user_id="u1",
        task_type="generate",
        status=status,
        input_prompt="a cat",
        created_at=created,
        updated_at=created,
        **kwargs,
    )


class TestHelpers:
    def test_status_messages(self):
        assert status_message("completed") == "Task completed"
        assert status_message("bogus") == "Unknown status"

    def test_elapsed(self):
        assert elapsed_seconds(_task(age=42), now=NOW) == pytest.approx(42)

    def test_naive_timestamps_are_utc(self):
        task = _task()
        task.created_at = (NOW - timedelta(seconds=5)).replace(tzinfo=None).isoformat()
        assert elapsed_seconds(task, now=NOW) == pytest.approx(5)


class TestBuildTaskProgress:
    """Progress per stored status and provider state."""

    def test_completed(self):
        progress = build_task_progress(_task("completed", processing_time=30), now=NOW)
        assert progress.progress == 100
        assert progress.processing_time == 30

    def test_failed_uses_error_message(self):
        progress = build_task_progress(_task("failed", error_message="nsfw"), now=NOW)
        assert progress.status == "failed"
        assert progress.message == "nsfw"

    def test_pending(self):
        progress = build_task_progress(_task("pending", age=15), now=NOW)
        assert progress.progress == 10
        assert progress.estimated_time_left == 45

    def test_waiting(self):
        progress = build_task_progress(_task(age=5), provider_state="waiting", now=NOW)
        assert progress.progress == 25
        assert progress.message == "Task queued, please wait..."

    def test_running_grows_with_elapsed(self):
        """Running progress starts at 25 and is capped at 76 (25 + 0.85 * 60)."""
        early = build_task_progress(_task(age=0), provider_state="running", now=NOW)
        halfway = build_task_progress(_task(age=30), provider_state="running", now=NOW)
        late = build_task_progress(_task(age=600), provider_state="running", now=NOW)
        assert early.progress == 25
        assert halfway.progress == 55
        assert late.progress == 76
        assert late.estimated_time_left == 0

    def test_unknown_provider_state_same_as_running(self):
        progress = build_task_progress(_task(age=30), provider_state=None, now=NOW)
        assert progress.progress == 55

    def test_success_awaiting_webhook(self):
        progress = build_task_progress(_task(), provider_state="success", now=NOW)
        assert progress.progress == 90
        assert progress.message == "Task finished, saving result..."

    def test_provider_failure(self):
        progress = build_task_progress(
            _task(), provider_state="fail", provider_message="quota", now=NOW
        )
        assert progress.status == "failed"
        assert progress.message == "quota"

    def test_unrecognised_state(self):
        progress = build_task_progress(_task(), provider_state="queued-elsewhere", now=NOW)
        assert progress.progress == 30
        assert progress.message == "Processing..."
