"""Task lifecycle orchestration.

This module ties the task store, provider client, asset storage, timeout
guard, quick-result cache and event hub together into the asynchronous task
lifecycle::

    create (pending) --submit--> processing --webhook success--> completed
                        |                    \\--webhook fail-----> failed
                        \\--submit error--> failed     \\--timeout--> failed

Route handlers call :class:`TaskService` and never touch the lower-level
components directly.  Background steps (provider submission) record
failures on the task rather than raising, since nothing is left to receive
the exception once the HTTP response has been sent.

Terminal tasks are final: a late webhook or timeout never rewrites a task
that is already ``completed`` or ``failed``.
"""

from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Literal

from photogen.core.config import PhotogenConfig
from photogen.core.errors import (
    AIServiceError,
    DatabaseError,
    PhotogenError,
    StorageError,
    TaskNotFoundError,
    TaskStateError,
)
from photogen.core.event_log import EventLog
from photogen.core.events import TaskEventHub
from photogen.core.models import ACTIVE_STATUSES, TaskProgress, TaskRecord, TaskResult
from photogen.core.progress import build_task_progress
from photogen.core.provider import ProviderClient, friendly_error_message, parse_result_urls
from photogen.core.storage import AssetStorage
from photogen.core.task_cache import TaskResultCache
from photogen.core.task_store import TaskStore, utc_now
from photogen.core.task_timeout import TaskTimeoutGuard

logger = logging.getLogger(__name__)

BATCH_ACTIONS = ("delete", "cancel")
MAX_BATCH_SIZE = 50

WebhookAction = Literal["completed", "failed", "processing", "ignored", "unchanged"]


@dataclass
class WebhookOutcome:
    """What a webhook did to the local task."""

    task_id: str
    provider_task_id: str
    state: str
    action: WebhookAction
    output_image_urls: list[str] = field(default_factory=list)
    error_message: str | None = None


@dataclass
class BatchResult:
    processed_count: int
    total_count: int
    errors: list[str] = field(default_factory=list)


def extract_webhook_data(payload: dict[str, Any]) -> dict[str, Any]:
    """Return the job fields of a webhook payload.

    The provider may post the bare job object or wrap it in a
    ``{"code", "msg", "data"}`` envelope.
    """
    data = payload.get("data")
    if isinstance(data, dict) and "taskId" in data:
        return data
    return payload


def cost_time_seconds(cost_time: Any) -> int | None:
    """Convert the provider's ``costTime`` (milliseconds) to whole seconds."""
    if cost_time is None or isinstance(cost_time, bool):
        return None
    try:
        return round(float(cost_time) / 1000)
    except (TypeError, ValueError):
        return None


class TaskService:
    """Entry point for every task operation.

    Args:
        store: Task store.
        provider: Provider client, or None when the provider is not
            configured (submissions then fail with a configuration error).
        storage: Asset storage for result images.
        cache: Quick-result cache.
        timeouts: Timeout guard.
        events: Event hub for push notifications.
        event_log: In-memory webhook/timeout event log.
        config: Application configuration.
    """

    def __init__(
        self,
        store: TaskStore,
        provider: ProviderClient | None,
        storage: AssetStorage,
        cache: TaskResultCache,
        timeouts: TaskTimeoutGuard,
        events: TaskEventHub,
        event_log: EventLog,
        config: PhotogenConfig,
    ):
        self.store = store
        self.provider = provider
        self.storage = storage
        self.cache = cache
        self.timeouts = timeouts
        self.events = events
        self.event_log = event_log
        self.config = config
        # Tasks whose webhook is being applied; repeated callbacks are ignored.
        self._resolving: set[str] = set()

    # ------------------------------------------------------------------
    # Creation and submission
    # ------------------------------------------------------------------

    def create_generate_task(
        self, user_id: str, prompt: str, params: dict[str, Any] | None = None
    ) -> TaskRecord:
        """Create a pending text-to-image task.

        The provider job is submitted separately by :meth:`submit_to_provider`
        so the caller can answer the client straight away.
        """
        task_id = self.store.create_task(
            user_id=user_id,
            task_type="generate",
            input_prompt=prompt,
            input_params=params or {},
        )
        logger.info(f"Created generate task {task_id} for user {user_id}")
        return self._get_or_raise(task_id)

    def create_edit_task(
        self,
        user_id: str,
        prompt: str,
        image_urls: list[str],
        strength: float | None = None,
        params: dict[str, Any] | None = None,
    ) -> TaskRecord:
        """Create a pending image editing task."""
        input_params = dict(params or {})
        input_params["strength"] = strength if strength is not None else self.config.default_strength
        task_id = self.store.create_task(
            user_id=user_id,
            task_type="edit",
            input_prompt=prompt,
            input_image_url=image_urls[0],
            input_image_urls=image_urls,
            input_params=input_params,
        )
        logger.info(f"Created edit task {task_id} with {len(image_urls)} input image(s)")
        return self._get_or_raise(task_id)

    async def submit_to_provider(self, task_id: str) -> bool:
        """Create the provider job for a pending task.

        On success the task moves to ``processing`` with its provider id
        recorded and the timeout guard armed.  On failure the task is marked
        ``failed`` with a user-facing message.

        Runs after the HTTP response is sent, so store errors are logged and
        recorded in the event log rather than raised.

        Returns:
            True if the provider accepted the job.
        """
        try:
            return await self._submit(task_id)
        except DatabaseError as e:
            logger.exception(f"Database error while submitting task {task_id}")
            self.event_log.add("task-submit-error", {"taskId": task_id, "error": str(e)})
            return False

    async def _submit(self, task_id: str) -> bool:
        task = self.store.get_task(task_id)
        if task is None or task.is_terminal:
            logger.info(f"Skipping submission of task {task_id}, nothing to submit")
            return False

        started = time.monotonic()
        try:
            if self.provider is None:
                raise AIServiceError("Provider API key is required", "MISSING_API_KEY")
            if task.task_type == "edit":
                provider_task_id = await self.provider.create_edit_task(
                    task.input_prompt,
                    task.input_image_urls or [task.input_image_url],
                    task.input_params.get("strength"),
                )
            else:
                provider_task_id = await self.provider.create_generate_task(
                    task.input_prompt,
                    width=task.input_params.get("width"),
                    height=task.input_params.get("height"),
                )
        except PhotogenError as e:
            logger.error(f"Provider submission failed for task {task_id}: {e}")
            if not self._fail_task(task_id, friendly_error_message(e)):
                return False
            self.event_log.add(
                "task-submit-failed", {"taskId": task_id, "code": e.code, "error": str(e)}
            )
            self.events.push_task_update(task_id, "failed", {"state": "submit_failed"})
            return False

        if not self.store.update_task(
            task_id,
            only_if_status=ACTIVE_STATUSES,
            status="processing",
            provider_task_id=provider_task_id,
        ):
            # Finished (e.g. cancelled) while the provider call was in flight.
            # Keep the provider id so its callback is recognised and ignored.
            self.store.update_task(task_id, provider_task_id=provider_task_id)
            logger.info(f"Task {task_id} finished during submission, not tracking {provider_task_id}")
            self.event_log.add(
                "task-submit-discarded", {"taskId": task_id, "providerTaskId": provider_task_id}
            )
            return False

        self.timeouts.set_timeout(task_id)
        elapsed_ms = round((time.monotonic() - started) * 1000)
        logger.info(f"Task {task_id} submitted as provider task {provider_task_id} in {elapsed_ms}ms")
        self.event_log.add(
            "task-submitted", {"taskId": task_id, "providerTaskId": provider_task_id}
        )
        self.events.push_task_update(task_id, "status", {"state": "processing"})
        return True

    # ------------------------------------------------------------------
    # Webhook resolution
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: dict[str, Any]) -> WebhookOutcome:
        """Apply a provider callback to the matching local task.

        Raises:
            ValueError: If the payload has no ``taskId``.
            TaskNotFoundError: If no local task has that provider id.
        """
        data = extract_webhook_data(payload)
        provider_task_id = data.get("taskId")
        state = data.get("state") or "waiting"
        if not provider_task_id:
            raise ValueError("Missing taskId")

        self.event_log.add(
            "webhook-received", {"providerTaskId": provider_task_id, "state": state}
        )
        task = self.store.get_task_by_provider_id(provider_task_id)
        if task is None:
            self.event_log.add("webhook-task-not-found", {"providerTaskId": provider_task_id})
            raise TaskNotFoundError(
                f"No local task for provider task {provider_task_id}",
                "TASK_NOT_FOUND",
                {"providerTaskId": provider_task_id},
            )

        if task.is_terminal or task.id in self._resolving:
            reason = task.status if task.is_terminal else "being resolved"
            logger.info(f"Webhook for task {task.id} ignored, task {reason}")
            if task.is_terminal:
                self.timeouts.clear_timeout(task.id)
            self.event_log.add("webhook-ignored", {"taskId": task.id, "status": reason})
            return WebhookOutcome(task.id, provider_task_id, state, "ignored")

        processing_time = cost_time_seconds(data.get("costTime"))
        self._resolving.add(task.id)
        try:
            if state == "success":
                outcome = await self._complete_task(task, data, processing_time)
            elif state == "fail":
                message = data.get("failMsg") or "Task failed"
                action = "failed" if self._fail_task(task.id, message, processing_time) else "ignored"
                outcome = WebhookOutcome(task.id, provider_task_id, state, action, error_message=message)
            elif task.status == "pending" and self.store.update_task(
                task.id, only_if_status=("pending",), status="processing"
            ):
                outcome = WebhookOutcome(task.id, provider_task_id, state, "processing")
            else:
                outcome = WebhookOutcome(task.id, provider_task_id, state, "unchanged")
        finally:
            self._resolving.discard(task.id)

        if outcome.action in ("completed", "failed"):
            self.timeouts.clear_timeout(task.id)
        if outcome.action == "ignored":
            logger.info(f"Webhook for task {task.id} discarded, task finished during processing")
            self.event_log.add("webhook-discarded", {"taskId": task.id, "state": state})
            return outcome

        update_type = {"completed": "completed", "failed": "failed"}.get(outcome.action, "status")
        self.events.push_task_update(
            task.id, update_type, {"state": state, "timestamp": int(time.time() * 1000)}
        )
        self.event_log.add(
            "webhook-processed",
            {"taskId": task.id, "providerTaskId": provider_task_id, "action": outcome.action},
        )
        return outcome

    async def _complete_task(
        self, task: TaskRecord, data: dict[str, Any], processing_time: int | None
    ) -> WebhookOutcome:
        provider_task_id = data["taskId"]
        try:
            result_urls = parse_result_urls(data.get("resultJson"))
        except ValueError:
            result_urls = []

        stored_urls: list[str] = []
        last_error: StorageError | None = None
        for index, url in enumerate(result_urls):
            try:
                stored_urls.append(
                    await self.storage.store_generated_image(url, task.id, task.user_id, index=index)
                )
            except StorageError as e:
                logger.error(f"Failed to store result {index + 1} of task {task.id}: {e}")
                last_error = e

        if not stored_urls:
            reason = str(last_error) if last_error else "No image URLs in result"
            message = f"Post-processing failed: {reason}"
            action = "failed" if self._fail_task(task.id, message, processing_time) else "ignored"
            return WebhookOutcome(task.id, provider_task_id, "success", action, error_message=message)

        completed = self.store.update_task(
            task.id,
            only_if_status=ACTIVE_STATUSES,
            status="completed",
            output_image_url=stored_urls[0],
            output_image_urls=stored_urls,
            processing_time=processing_time,
            completed_at=utc_now(),
        )
        if not completed:
            return WebhookOutcome(task.id, provider_task_id, "success", "ignored")

        self.cache.cache_result(
            TaskResult(task_id=task.id, status="completed", output_image_url=stored_urls[0])
        )
        logger.info(f"Task {task.id} completed via webhook with {len(stored_urls)} image(s)")
        return WebhookOutcome(
            task.id, provider_task_id, "success", "completed", output_image_urls=stored_urls
        )

    def _fail_task(self, task_id: str, message: str, processing_time: int | None = None) -> bool:
        """Mark an in-flight task failed. Returns False if it had already finished."""
        updates: dict[str, Any] = {
            "status": "failed",
            "error_message": message,
            "completed_at": utc_now(),
        }
        if processing_time is not None:
            updates["processing_time"] = processing_time
        if not self.store.update_task(task_id, only_if_status=ACTIVE_STATUSES, **updates):
            return False
        self.cache.cache_result(TaskResult(task_id=task_id, status="failed", error_message=message))
        logger.info(f"Task {task_id} failed: {message}")
        return True

    async def simulate_webhook(
        self,
        provider_task_id: str,
        state: str,
        result_urls: list[str] | None = None,
        fail_msg: str | None = None,
    ) -> tuple[dict[str, Any], WebhookOutcome]:
        """Build a provider-shaped callback and run it through :meth:`handle_webhook`."""
        payload: dict[str, Any] = {
            "taskId": provider_task_id,
            "state": state,
            "costTime": random.randint(10, 70) * 1000,
            "completeTime": int(time.time() * 1000),
        }
        if state == "success":
            urls = result_urls or ["https://via.placeholder.com/512x512.png?text=Test+Image"]
            payload["resultJson"] = json.dumps({"resultUrls": urls})
        elif state == "fail":
            payload["failMsg"] = fail_msg or "Simulated failure"
        logger.info(f"Simulating webhook for provider task {provider_task_id} ({state})")
        return payload, await self.handle_webhook(payload)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_or_raise(self, task_id: str, user_id: str | None = None) -> TaskRecord:
        task = self.store.get_task(task_id, user_id)
        if task is None:
            raise TaskNotFoundError("Task not found", "TASK_NOT_FOUND", {"taskId": task_id})
        return task

    def get_task(self, task_id: str, user_id: str | None = None) -> TaskRecord:
        return self._get_or_raise(task_id, user_id)

    def get_quick_result(self, task_id: str) -> TaskResult | None:
        return self.cache.get_result(task_id)

    async def refresh_status(
        self, task_id: str, user_id: str | None = None
    ) -> tuple[TaskRecord, TaskProgress]:
        """Read a task and, while it is processing, ask the provider about it.

        A provider-side failure that has not been delivered by webhook is
        written to the task here.  Provider query errors are logged and the
        stored state is used instead.
        """
        task = self._get_or_raise(task_id, user_id)
        provider_state: str | None = None
        provider_message: str | None = None

        if task.status == "processing" and task.provider_task_id and self.provider is not None:
            try:
                status = await self.provider.get_task_status(task.provider_task_id)
            except AIServiceError as e:
                logger.warning(f"Provider status query failed for {task.provider_task_id}: {e}")
            else:
                provider_state = status.state
                provider_message = status.fail_msg
                if status.state == "fail":
                    self.timeouts.clear_timeout(task.id)
                    message = status.fail_msg or "AI task failed"
                    if self._fail_task(task.id, message, cost_time_seconds(status.cost_time)):
                        self.event_log.add(
                            "status-refresh-failed",
                            {"taskId": task.id, "providerTaskId": task.provider_task_id, "error": message},
                        )
                        self.events.push_task_update(task.id, "failed", {"state": "fail"})
                    task = self._get_or_raise(task.id)

        progress = build_task_progress(
            task,
            provider_state=provider_state,
            provider_message=provider_message,
            estimated_total=self.config.estimated_task_seconds,
        )
        return task, progress

    # ------------------------------------------------------------------
    # User-driven changes
    # ------------------------------------------------------------------

    def cancel_task(self, task_id: str, user_id: str) -> TaskRecord:
        """Fail an in-flight task on the user's request.

        Raises:
            TaskNotFoundError: If the user has no such task.
            TaskStateError: If the task already finished.
        """
        self._get_or_raise(task_id, user_id)
        if not self._fail_task(task_id, "Cancelled by user"):
            status = self._get_or_raise(task_id).status
            raise TaskStateError(
                f"Task {task_id} cannot be cancelled (status: {status})",
                "INVALID_STATE",
                {"status": status},
            )
        self.timeouts.clear_timeout(task_id)
        self.events.push_task_update(task_id, "failed", {"state": "cancelled"})
        return self._get_or_raise(task_id)

    def update_task(
        self,
        task_id: str,
        user_id: str,
        status: str | None = None,
        error_message: str | None = None,
    ) -> TaskRecord:
        """Apply a manual status/error change to a task the user owns."""
        self._get_or_raise(task_id, user_id)
        updates: dict[str, Any] = {}
        if status:
            updates["status"] = status
        if error_message:
            updates["error_message"] = error_message
        if status in ("completed", "failed"):
            updates["completed_at"] = utc_now()
            self.timeouts.clear_timeout(task_id)
        self.store.update_task(task_id, **updates)
        return self._get_or_raise(task_id, user_id)

    def delete_task(self, task_id: str, user_id: str) -> None:
        self._get_or_raise(task_id, user_id)
        self.timeouts.clear_timeout(task_id)
        self.cache.clear_result(task_id)
        self.store.delete_task(task_id, user_id)

    def batch_action(self, user_id: str, task_ids: list[str], action: str) -> BatchResult:
        """Apply ``delete`` or ``cancel`` to several tasks, collecting per-task errors."""
        result = BatchResult(processed_count=0, total_count=len(task_ids))
        for task_id in task_ids:
            try:
                if action == "delete":
                    self.delete_task(task_id, user_id)
                elif action == "cancel":
                    self.cancel_task(task_id, user_id)
                else:
                    result.errors.append(f"Unknown action: {action}")
                    continue
                result.processed_count += 1
            except TaskNotFoundError:
                result.errors.append(f"Task {task_id} not found or access denied")
            except TaskStateError as e:
                result.errors.append(str(e))
        return result
