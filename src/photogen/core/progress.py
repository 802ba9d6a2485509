"""Progress estimation for in-flight tasks.

The provider reports a coarse state (``waiting``, ``running``, ``success``,
``fail``) and nothing in between, so progress shown to the user is an
estimate derived from the task's age and an expected total duration.
"""

from __future__ import annotations

from datetime import datetime, timezone

from photogen.core.models import TaskProgress, TaskRecord

_STATUS_MESSAGES = {
    "pending": "Task created, waiting to be processed...",
    "processing": "Generating image, please wait...",
    "completed": "Task completed",
    "failed": "Task failed",
}


def status_message(status: str) -> str:
    """Return the user-facing message for a task status."""
    return _STATUS_MESSAGES.get(status, "Unknown status")


def elapsed_seconds(task: TaskRecord, now: datetime | None = None) -> float:
    """Seconds since the task was created."""
    now = now or datetime.now(timezone.utc)
    created = datetime.fromisoformat(task.created_at)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created).total_seconds())


def build_task_progress(
    task: TaskRecord,
    provider_state: str | None = None,
    provider_message: str | None = None,
    now: datetime | None = None,
    estimated_total: int = 60,
) -> TaskProgress:
    """Build a :class:`TaskProgress` for a task.

    Args:
        task: The task as currently stored.
        provider_state: Provider state for processing tasks, when known.
        provider_message: Provider failure message, when known.
        now: Reference time (defaults to the current UTC time).
        estimated_total: Expected total duration in seconds.

    Returns:
        Progress snapshot.  The returned status is ``failed`` when the
        provider reports failure even if the stored task is still processing.
    """
    elapsed = elapsed_seconds(task, now)
    remaining = round(max(0.0, estimated_total - elapsed))
    progress = TaskProgress(
        task_id=task.id,
        status=task.status,
        message=status_message(task.status),
        processing_time=task.processing_time,
    )

    if task.status == "completed":
        progress.progress = 100
        return progress
    if task.status == "failed":
        progress.message = task.error_message or status_message("failed")
        return progress
    if task.status == "pending":
        progress.progress = 10
        progress.estimated_time_left = remaining
        return progress

    # processing
    if provider_state == "success":
        progress.progress = 90
        progress.message = "Task finished, saving result..."
    elif provider_state == "fail":
        progress.status = "failed"
        progress.message = provider_message or "Task processing failed"
    elif provider_state == "waiting":
        progress.progress = 25
        progress.message = "Task queued, please wait..."
        progress.estimated_time_left = remaining
    elif provider_state == "running" or provider_state is None:
        ratio = min(elapsed / estimated_total, 0.85) if estimated_total else 0.85
        progress.progress = round(25 + ratio * 60)
        progress.estimated_time_left = remaining
    else:
        progress.progress = 30
        progress.message = "Processing..."
        progress.estimated_time_left = remaining
    return progress
