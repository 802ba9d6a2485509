"""Domain models for tasks, cached results and provider status.

``TaskRecord`` mirrors one row of the ``tasks`` table.  It is a Pydantic
model so route handlers can return it directly.  The smaller in-process
value types (cache entries, provider status snapshots) are plain
dataclasses.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field


TaskStatus = Literal["pending", "processing", "completed", "failed"]
TaskType = Literal["generate", "edit", "enhance"]

TASK_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
ACTIVE_STATUSES: tuple[str, ...] = ("pending", "processing")


class TaskRecord(BaseModel):
    """A persisted image generation or editing task."""

    id: str
    user_id: str
    task_type: TaskType
    status: TaskStatus = "pending"
    input_image_url: str | None = None
    input_image_urls: list[str] = Field(default_factory=list)
    input_prompt: str
    input_params: dict[str, Any] = Field(default_factory=dict)
    output_image_url: str | None = None
    output_image_urls: list[str] = Field(default_factory=list)
    provider_task_id: str | None = None
    processing_time: int | None = None
    error_message: str | None = None
    created_at: str
    updated_at: str
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        """True once the task is completed or failed."""
        return self.status in TERMINAL_STATUSES


class TaskStats(BaseModel):
    """Per-user task counts by status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class TaskProgress(BaseModel):
    """Progress snapshot returned by the status route."""

    task_id: str
    status: TaskStatus
    progress: int | None = None
    message: str | None = None
    processing_time: int | None = None
    estimated_time_left: int | None = None


@dataclass
class TaskResult:
    """A resolved task outcome held in the quick-result cache."""

    task_id: str
    status: Literal["completed", "failed"]
    output_image_url: str | None = None
    error_message: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ProviderTaskStatus:
    """Snapshot of a provider job as reported by ``recordInfo``."""

    task_id: str
    state: str
    model: str | None = None
    result_urls: list[str] = field(default_factory=list)
    fail_code: str | None = None
    fail_msg: str | None = None
    cost_time: int | None = None
    complete_time: int | None = None
    create_time: int | None = None
