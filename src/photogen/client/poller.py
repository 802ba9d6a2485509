"""Polling client for PhotoGen tasks.

Mirrors what the web client does after creating a task: wait for the
provider to get going, then check the quick-result cache and the task
store in turn until the task resolves or the check limit is reached.

Example::

    from photogen.client import TaskPoller

    with TaskPoller("http://localhost:8000", user_id="u1") as poller:
        task_id = poller.submit_generate("a red fox in the snow")
        result = poller.wait_for_result(task_id)
        print(result.status, result.image_url)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import httpx

logger = logging.getLogger(__name__)

PollStatus = Literal["completed", "failed", "timed_out"]


@dataclass
class PollResult:
    """Final outcome of :meth:`TaskPoller.wait_for_result`.

    Attributes:
        status: ``completed``, ``failed`` or ``timed_out``.
        task_id: The polled task.
        image_url: Output image URL when completed.
        error_message: Failure reason when failed.
        checks: Number of checks performed.
        source: ``cache`` or ``store``, whichever resolved the task.
    """

    status: PollStatus
    task_id: str
    image_url: str | None = None
    error_message: str | None = None
    checks: int = 0
    source: str | None = None


def _resolved(task: dict[str, Any]) -> tuple[PollStatus, str | None, str | None] | None:
    """Return ``(status, image_url, error)`` if ``task`` is final, else None."""
    status = task.get("status")
    if status == "completed" and task.get("output_image_url"):
        return "completed", task["output_image_url"], None
    if status == "failed":
        return "failed", None, task.get("error_message") or "Unknown error"
    return None


class TaskPoller:
    """Synchronous task poller over ``httpx.Client``.

    Args:
        base_url: Root URL of the PhotoGen service.
        user_id: User the tasks belong to.
        transport: Optional httpx transport (tests).
        sleep: Sleep function, replaceable in tests.
        initial_delay: Seconds to wait before the first check.
        interval: Seconds between checks.
        error_interval: Seconds to wait after a check raised.
        max_checks: Checks performed before giving up.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        initial_delay: float = 25.0,
        interval: float = 3.0,
        error_interval: float = 2.0,
        max_checks: int = 120,
        timeout: float = 10.0,
    ):
        self.user_id = user_id
        self.sleep = sleep
        self.initial_delay = initial_delay
        self.interval = interval
        self.error_interval = error_interval
        self.max_checks = max_checks
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TaskPoller:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Task creation
    # ------------------------------------------------------------------

    def _create(self, path: str, body: dict[str, Any]) -> str:
        response = self._client.post(path, json={**body, "userId": self.user_id})
        payload = response.json()
        if response.status_code != 200 or not payload.get("success"):
            raise RuntimeError(payload.get("error") or f"HTTP {response.status_code}")
        return payload["taskId"]

    def submit_generate(self, prompt: str, **params: Any) -> str:
        """Create a text-to-image task and return its id."""
        return self._create("/api/ai/generate", {"prompt": prompt, **params})

    def submit_edit(self, prompt: str, image_urls: list[str], **params: Any) -> str:
        """Create an image editing task and return its id."""
        return self._create(
            "/api/ai/edit", {"prompt": prompt, "inputImages": image_urls, **params}
        )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _check_cache(self, task_id: str) -> dict[str, Any] | None:
        # Cache misses and errors are expected; the store check follows.
        try:
            response = self._client.get(f"/api/tasks/{task_id}/quick")
            if response.status_code != 200:
                return None
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            return None
        if payload.get("success") and payload.get("data"):
            return payload["data"]
        return None

    def _check_store(self, task_id: str) -> dict[str, Any] | None:
        response = self._client.get(f"/api/tasks/{task_id}", params={"userId": self.user_id})
        if response.status_code != 200:
            return None
        payload = response.json()
        if payload.get("success") and payload.get("data"):
            return payload["data"]
        return None

    def check_once(self, task_id: str) -> PollResult | None:
        """Run one cache-then-store check.

        Returns:
            The final result if the task resolved, otherwise None.

        Raises:
            httpx.HTTPError: If the store request fails.
        """
        task = self._check_cache(task_id)
        if task and (resolved := _resolved(task)):
            status, image_url, error = resolved
            return PollResult(status, task_id, image_url, error, source="cache")

        task = self._check_store(task_id)
        if task and (resolved := _resolved(task)):
            status, image_url, error = resolved
            return PollResult(status, task_id, image_url, error, source="store")
        return None

    def wait_for_result(self, task_id: str) -> PollResult:
        """Poll until ``task_id`` resolves or ``max_checks`` is reached."""
        logger.info(f"Polling task {task_id} after {self.initial_delay}s")
        self.sleep(self.initial_delay)

        checks = 0
        while checks < self.max_checks:
            checks += 1
            try:
                result = self.check_once(task_id)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Check {checks} for task {task_id} failed: {e}")
                if checks < self.max_checks:
                    self.sleep(self.error_interval)
                continue

            if result is not None:
                result.checks = checks
                logger.info(f"Task {task_id} {result.status} after {checks} check(s)")
                return result
            if checks < self.max_checks:
                self.sleep(self.interval)

        logger.warning(f"Gave up on task {task_id} after {checks} checks")
        return PollResult("timed_out", task_id, checks=checks)
