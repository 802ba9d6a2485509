"""Pydantic request models for the PhotoGen API.

These models define the JSON schema for the request bodies.  FastAPI uses
them for type validation and OpenAPI documentation; the business checks
(required fields, prompt length limits) are done in the route handlers so
the error messages match the rest of the API envelope.

Field names follow the camelCase keys the web client sends (``userId``,
``inputImage``); Python attributes are snake_case through aliases.

Models
------
GenerateTaskRequest
    Payload for ``POST /api/ai/generate``.  Unknown keys are kept and stored
    as the task's ``input_params``.
EditTaskRequest
    Payload for ``POST /api/ai/edit``.
TaskUpdateRequest
    Payload for ``PATCH /api/tasks/{id}``.
BatchTaskRequest
    Payload for ``PATCH /api/tasks``.
SimulateWebhookRequest
    Payload for ``POST /api/simulate-webhook``.
ProviderLookupRequest
    Payload for ``POST /api/debug/tasks``.
DownloadImageRequest
    Payload for ``POST /api/download-image``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateTaskRequest(_CamelModel):
    """Request body for ``POST /api/ai/generate``.

    Attributes:
        prompt: Text prompt describing the image.
        user_id: Owner of the new task.
        width: Optional target width, mapped to the closest provider ratio.
        height: Optional target height.

    Any other keys (``steps``, ``seed``, ``style``...) are accepted and
    stored verbatim with the task.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    prompt: str | None = Field(default=None, description="Text prompt.")
    user_id: str | None = Field(default=None, alias="userId", description="Task owner.")
    width: int | None = Field(default=None, gt=0, description="Target width in pixels.")
    height: int | None = Field(default=None, gt=0, description="Target height in pixels.")

    def task_params(self) -> dict[str, Any]:
        """Return the parameters stored with the task (everything but prompt/user)."""
        params = dict(self.model_extra or {})
        if self.width is not None:
            params["width"] = self.width
        if self.height is not None:
            params["height"] = self.height
        return params


class EditTaskRequest(_CamelModel):
    """Request body for ``POST /api/ai/edit``.

    Either ``inputImage`` (one URL) or ``inputImages`` (a list) must be set;
    when both are present the list wins.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    prompt: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    input_image: str | None = Field(default=None, alias="inputImage")
    input_images: list[str] | None = Field(default=None, alias="inputImages")
    strength: float | None = Field(default=None, ge=0.0, le=1.0)

    def image_urls(self) -> list[str]:
        if self.input_images:
            return [url for url in self.input_images if url]
        return [self.input_image] if self.input_image else []

    def task_params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class TaskUpdateRequest(_CamelModel):
    """Request body for ``PATCH /api/tasks/{id}``."""

    user_id: str | None = Field(default=None, alias="userId")
    status: Literal["pending", "processing", "completed", "failed"] | None = None
    error_message: str | None = None


class BatchTaskRequest(_CamelModel):
    """Request body for ``PATCH /api/tasks``."""

    user_id: str | None = Field(default=None, alias="userId")
    task_ids: list[str] | None = Field(default=None, alias="taskIds")
    action: str | None = None


class SimulateWebhookRequest(_CamelModel):
    """Request body for ``POST /api/simulate-webhook``.

    ``taskId`` is the *provider* task id, as in a real callback.
    """

    task_id: str | None = Field(default=None, alias="taskId")
    state: Literal["waiting", "success", "fail"] | None = None
    result_urls: list[str] | None = Field(default=None, alias="resultUrls")
    fail_msg: str | None = Field(default=None, alias="failMsg")


class ProviderLookupRequest(BaseModel):
    """Request body for ``POST /api/debug/tasks``."""

    provider_task_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("providerTaskId", "nanoBananaTaskId", "provider_task_id"),
    )


class DownloadImageRequest(_CamelModel):
    """Request body for ``POST /api/download-image``."""

    image_url: str | None = Field(default=None, alias="imageUrl")
    user_id: str | None = Field(default=None, alias="userId")
