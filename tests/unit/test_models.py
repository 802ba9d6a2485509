"""Tests for photogen.core.models - task records and value objects."""

from __future__ import annotations

import dataclasses

import pytest
from pydantic import ValidationError

from photogen.core.models import TERMINAL_STATUSES, TaskRecord, TaskResult, TaskStats


def _record(**overrides) -> TaskRecord:
    fields = {
        "id": "t1",
        "user_id": "u1",
        "task_type": "generate",
        "input_prompt": "a fox",
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    fields.update(overrides)
    return TaskRecord(**fields)


class TestTaskRecord:
    """Test TaskRecord defaults and terminal detection."""

    def test_defaults(self):
        task = _record()
        assert task.status == "pending"
        assert task.input_params == {}
        assert task.output_image_urls == []
        assert task.completed_at is None

    @pytest.mark.parametrize("status", ["completed", "failed"])
    def test_terminal(self, status):
        assert _record(status=status).is_terminal

    @pytest.mark.parametrize("status", ["pending", "processing"])
    def test_in_flight(self, status):
        assert not _record(status=status).is_terminal

    def test_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            _record(status="done")

    def test_terminal_statuses(self):
        assert set(TERMINAL_STATUSES) == {"completed", "failed"}


def test_task_stats_default_to_zero():
    assert TaskStats().model_dump() == {
        "total": 0,
        "pending": 0,
        "processing": 0,
        "completed": 0,
        "failed": 0,
    }


def test_task_result_serializes_for_quick_route():
    """The quick route returns ``dataclasses.asdict`` of the cached result."""
    result = TaskResult(task_id="t1", status="failed", error_message="boom")
    data = dataclasses.asdict(result)
    assert data["task_id"] == "t1"
    assert data["status"] == "failed"
    assert data["error_message"] == "boom"
