"""PhotoGen task service - FastAPI application.

This module is the single entry point for the web service.  It builds the
FastAPI ``app``, defines every REST route, and provides the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
Image generation is asynchronous end to end:

- ``POST /api/ai/generate`` and ``POST /api/ai/edit`` create a ``pending``
  task and answer immediately.  Submission to the provider runs as a
  FastAPI background task after the response is sent.
- The provider posts the result to ``POST /api/webhook/nano-banana``.  The
  webhook stores the images, writes the final status, fills the quick-result
  cache and notifies server-sent event subscribers.
- Clients poll ``/api/tasks/{id}/quick`` (cache) and ``/api/tasks/{id}``
  (database), or subscribe to ``/api/events/{id}``.
- A per-task timeout fails tasks whose webhook never arrives.

Services live on ``app.state`` and are created in :func:`lifespan`.
Generated and uploaded images are served from the ``/media`` mount.

Endpoints
---------
==========  ===============================  ==================================
Method      Path                             Purpose
==========  ===============================  ==================================
POST        ``/api/ai/generate``             Create a text-to-image task
POST        ``/api/ai/edit``                 Create an image editing task
GET         ``/api/tasks``                   List a user's tasks with stats
PATCH       ``/api/tasks``                   Batch delete/cancel
GET         ``/api/tasks/{id}``              Single task
PATCH       ``/api/tasks/{id}``              Update status/error message
DELETE      ``/api/tasks/{id}``              Delete a task
GET         ``/api/tasks/{id}/quick``        Quick-result cache lookup
GET         ``/api/tasks/{id}/status``       Task with progress estimate
GET         ``/api/events/{id}``             Server-sent event stream
POST        ``/api/webhook/nano-banana``     Provider callback
POST/GET    ``/api/upload``                  Image upload / upload limits
POST        ``/api/download-image``          Image download proxy
POST        ``/api/simulate-webhook``        Feed a synthetic callback
GET/DELETE  ``/api/webhook-logs``            Webhook and timeout event log
GET/DELETE  ``/api/debug/timeouts``          Active timeout timers
GET         ``/api/debug/config``            Redacted configuration
GET         ``/api/debug/provider``          Provider connection test
GET/POST/   ``/api/debug/tasks``             Recent tasks / provider lookup /
DELETE                                       cleanup of old failed tasks
GET         ``/api/health``                  Health summary (``checkProvider``
                                             also contacts the provider)
==========  ===============================  ==================================

Usage
-----
CLI (installed entry point)::

    photogen

Direct invocation::

    python -m photogen.api.main
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import (
    APIRouter,
    BackgroundTasks,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from photogen import __version__
from photogen.api.models import (
    BatchTaskRequest,
    DownloadImageRequest,
    EditTaskRequest,
    GenerateTaskRequest,
    ProviderLookupRequest,
    SimulateWebhookRequest,
    TaskUpdateRequest,
)
from photogen.api.pagination import error_response, pagination_info, success_response
from photogen.core.config import PhotogenConfig, config
from photogen.core.errors import (
    AIServiceError,
    PhotogenError,
    StorageError,
    TaskNotFoundError,
    TaskStateError,
)
from photogen.core.event_log import EventLog
from photogen.core.events import TaskEventHub
from photogen.core.lifecycle import BATCH_ACTIONS, MAX_BATCH_SIZE, TaskService
from photogen.core.models import TASK_STATUSES
from photogen.core.provider import (
    ProviderClient,
    available_models,
    build_webhook_url,
    validate_edit_params,
    validate_generation_params,
)
from photogen.core.storage import ALLOWED_CONTENT_TYPES, MEDIA_ROUTE, AssetStorage
from photogen.core.task_cache import TaskResultCache
from photogen.core.task_store import TaskStore
from photogen.core.task_timeout import TaskTimeoutGuard

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Storage error codes caused by the request rather than the server.
_CLIENT_STORAGE_ERRORS = frozenset({"FILE_TOO_LARGE", "INVALID_IMAGE", "INVALID_KEY"})


# ---------------------------------------------------------------------------
# Application lifecycle - service wiring and teardown.
# ---------------------------------------------------------------------------


def build_services(
    settings: PhotogenConfig, transport: httpx.AsyncBaseTransport | None = None
) -> TaskService:
    """Create every core service for one application instance.

    A missing provider API key is not fatal: the service starts, and tasks
    fail at submission with a configuration error.

    Args:
        settings: Configuration to build from.
        transport: Optional httpx transport shared by the provider client and
            the image downloader (tests pass ``httpx.MockTransport``).

    Returns:
        The :class:`TaskService` holding all other services.
    """
    store = TaskStore(settings.database_path)
    cache = TaskResultCache(ttl_seconds=settings.cache_ttl_seconds)
    event_log = EventLog(max_entries=settings.event_log_size)
    events = TaskEventHub(max_stream_seconds=settings.task_timeout_seconds)
    timeouts = TaskTimeoutGuard(
        store, event_log, cache, timeout_seconds=settings.task_timeout_seconds, events=events
    )
    storage = AssetStorage(settings, transport=transport)

    provider: ProviderClient | None
    try:
        provider = ProviderClient(settings, transport=transport)
    except AIServiceError as e:
        logger.warning(f"Provider client disabled: {e}")
        provider = None

    return TaskService(store, provider, storage, cache, timeouts, events, event_log, settings)


def _make_lifespan(settings: PhotogenConfig, transport: httpx.AsyncBaseTransport | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application startup and shutdown lifecycle.

        On startup:
            Builds the services and stores them on ``app.state``.

        On shutdown:
            Cancels outstanding timeout timers and closes open event streams.
            Tasks still in flight stay ``processing`` in the database; their
            webhooks are still accepted after a restart.
        """
        # --- Startup -------------------------------------------------------
        app.state.settings = settings
        app.state.service = build_services(settings, transport)
        logger.info(
            f"PhotoGen {__version__} started (database={settings.database_path}, "
            f"provider={'configured' if app.state.service.provider else 'not configured'})"
        )

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        service: TaskService = app.state.service
        cleared = service.timeouts.clear_all()
        closed = service.events.close_all()
        logger.info(f"Shutdown: cleared {cleared} timeout(s), closed {closed} event stream(s)")

    return lifespan


# ---------------------------------------------------------------------------
# Error handlers - every error leaves as {"success": false, "error": ...}.
# ---------------------------------------------------------------------------


def _status_for(error: PhotogenError) -> int:
    if isinstance(error, TaskNotFoundError):
        return 404
    if isinstance(error, TaskStateError):
        return 409
    if isinstance(error, AIServiceError):
        return 502
    if isinstance(error, StorageError):
        if error.code in _CLIENT_STORAGE_ERRORS:
            return 400
        if error.code == "DOWNLOAD_FAILED":
            return 502
    return 500


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_response(str(exc.detail)))


async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"Invalid request: {location}: {message}" if location else f"Invalid request: {message}"
    return JSONResponse(status_code=400, content=error_response(detail))


async def _photogen_exception_handler(request: Request, exc: PhotogenError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc}")
    return JSONResponse(
        status_code=status_code, content=error_response(exc.message, code=exc.code)
    )


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------

router = APIRouter()


def _service(request: Request) -> TaskService:
    return request.app.state.service


def _require(value, message: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise HTTPException(status_code=400, detail=message)
    return value


def _task_created_response(service: TaskService, task_id: str, message: str) -> dict:
    estimated = service.config.estimated_task_seconds
    return success_response(
        data={"taskId": task_id, "status": "pending", "estimatedTime": estimated},
        message=message,
        taskId=task_id,
        estimatedTime=estimated,
    )


# ---------------------------------------------------------------------------
# Task creation.
# ---------------------------------------------------------------------------


@router.post("/api/ai/generate")
async def create_generate_task(
    req: GenerateTaskRequest, background_tasks: BackgroundTasks, request: Request
) -> dict:
    """Create a text-to-image task and submit it in the background.

    Returns:
        Envelope with ``taskId`` and ``estimatedTime``.  The task is
        ``pending`` at this point.

    Raises:
        HTTPException: 400 for a missing prompt/userId or an oversized prompt.
    """
    service = _service(request)
    if not req.prompt or not req.user_id:
        raise HTTPException(
            status_code=400, detail="Missing required parameters: prompt and userId"
        )
    errors = validate_generation_params(req.prompt, service.config)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))

    logger.info(f"Generate request from user {req.user_id}: {req.prompt[:100]!r}")
    task = service.create_generate_task(req.user_id, req.prompt, req.task_params())
    background_tasks.add_task(service.submit_to_provider, task.id)
    return _task_created_response(service, task.id, "Task created, initializing...")


@router.post("/api/ai/edit")
async def create_edit_task(
    req: EditTaskRequest, background_tasks: BackgroundTasks, request: Request
) -> dict:
    """Create an image editing task and submit it in the background.

    Raises:
        HTTPException: 400 for missing prompt/userId/input image, too many
            input images, or an oversized prompt.
    """
    service = _service(request)
    if not req.prompt or not req.user_id:
        raise HTTPException(
            status_code=400, detail="Missing required parameters: prompt and userId"
        )
    image_urls = req.image_urls()
    errors = validate_edit_params(req.prompt, image_urls, service.config)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))

    logger.info(
        f"Edit request from user {req.user_id} with {len(image_urls)} image(s): "
        f"{req.prompt[:100]!r}"
    )
    task = service.create_edit_task(
        req.user_id, req.prompt, image_urls, req.strength, req.task_params()
    )
    background_tasks.add_task(service.submit_to_provider, task.id)
    return _task_created_response(service, task.id, "Edit task created, initializing...")


# ---------------------------------------------------------------------------
# Task queries and updates.
# ---------------------------------------------------------------------------


@router.get("/api/tasks")
async def list_tasks(
    request: Request,
    user_id: str | None = Query(default=None, alias="userId"),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    status: str | None = Query(default=None),
) -> dict:
    """List a user's tasks, newest first, with per-status counts.

    Returns:
        Envelope whose ``data`` holds ``tasks``, ``stats`` and ``pagination``.
    """
    service = _service(request)
    _require(user_id, "User ID is required")
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="Limit must be between 1 and 100")
    if offset < 0:
        raise HTTPException(status_code=400, detail="Offset must be non-negative")
    if status is not None and status not in TASK_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    tasks = service.store.get_user_tasks(user_id, limit=limit, offset=offset, status=status)
    total = service.store.count_user_tasks(user_id, status=status)
    stats = service.store.get_task_stats(user_id)
    return success_response(
        data={
            "tasks": [task.model_dump() for task in tasks],
            "stats": stats.model_dump(),
            "pagination": pagination_info(total, limit, offset, len(tasks)),
        }
    )


@router.patch("/api/tasks")
async def batch_update_tasks(req: BatchTaskRequest, request: Request):
    """Apply ``delete`` or ``cancel`` to up to 50 tasks.

    Returns:
        200 when every task was processed, 207 when some failed.  ``data``
        holds ``processedCount``, ``totalCount`` and ``errors``.
    """
    service = _service(request)
    if not req.user_id or req.task_ids is None or not req.action:
        raise HTTPException(
            status_code=400,
            detail="Missing required parameters: userId, taskIds (array), action",
        )
    if not req.task_ids:
        raise HTTPException(status_code=400, detail="At least one task ID is required")
    if len(req.task_ids) > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400, detail=f"Cannot process more than {MAX_BATCH_SIZE} tasks at once"
        )
    if req.action not in BATCH_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {req.action}")

    result = service.batch_action(req.user_id, req.task_ids, req.action)
    message = f"Processed {result.processed_count} of {result.total_count} tasks"
    if result.errors:
        message += f" with {len(result.errors)} errors"
    body = {
        "success": not result.errors,
        "data": {
            "processedCount": result.processed_count,
            "totalCount": result.total_count,
            "errors": result.errors,
        },
        "message": message,
    }
    return JSONResponse(status_code=207 if result.errors else 200, content=body)


@router.get("/api/tasks/{task_id}")
async def get_task(
    task_id: str, request: Request, user_id: str | None = Query(default=None, alias="userId")
) -> dict:
    """Return one task as stored.  With ``userId`` only the owner's task matches."""
    task = _service(request).get_task(task_id, user_id)
    return success_response(data=task.model_dump())


@router.patch("/api/tasks/{task_id}")
async def update_task(task_id: str, req: TaskUpdateRequest, request: Request) -> dict:
    """Manually update a task's status or error message (owner only)."""
    _require(req.user_id, "Task ID and User ID are required")
    task = _service(request).update_task(task_id, req.user_id, req.status, req.error_message)
    return success_response(data=task.model_dump(), message="Task updated successfully")


@router.delete("/api/tasks/{task_id}")
async def delete_task(
    task_id: str, request: Request, user_id: str | None = Query(default=None, alias="userId")
) -> dict:
    """Delete a task (owner only)."""
    _require(user_id, "Task ID and User ID are required")
    _service(request).delete_task(task_id, user_id)
    return success_response(message="Task deleted successfully")


@router.get("/api/tasks/{task_id}/quick")
async def get_quick_result(task_id: str, request: Request) -> dict:
    """Look up a resolved task in the quick-result cache.

    A miss is not an error: the response is 200 with ``success: false`` so
    pollers can fall through to the database without handling a 404.
    """
    result = _service(request).get_quick_result(task_id)
    if result is None:
        return {"success": False, "message": "No cached result"}
    return success_response(data=dataclasses.asdict(result), source="cache")


@router.get("/api/tasks/{task_id}/status")
async def get_task_status(
    task_id: str, request: Request, user_id: str | None = Query(default=None, alias="userId")
) -> dict:
    """Return the task with a progress estimate, refreshed from the provider."""
    task, progress = await _service(request).refresh_status(task_id, user_id)
    return success_response(data={"task": task.model_dump(), "progress": progress.model_dump()})


@router.get("/api/events/{task_id}")
async def task_events(task_id: str, request: Request) -> StreamingResponse:
    """Stream task updates as server-sent events until the task resolves."""
    service = _service(request)
    service.get_task(task_id)
    return StreamingResponse(
        service.events.stream(task_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# Provider webhook.
# ---------------------------------------------------------------------------


@router.post("/api/webhook/nano-banana")
async def provider_webhook(request: Request) -> dict:
    """Receive a provider callback and resolve the matching task.

    Raises:
        HTTPException: 400 for an unreadable payload or missing ``taskId``.
        TaskNotFoundError: 404 when no task has the provider id.
    """
    service = _service(request)
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        service.event_log.add("webhook-invalid-json", {})
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    try:
        outcome = await service.handle_webhook(payload)
    except ValueError as e:
        service.event_log.add("webhook-invalid", {"error": str(e)})
        raise HTTPException(status_code=400, detail=str(e))

    return success_response(
        data={
            "taskId": outcome.task_id,
            "providerTaskId": outcome.provider_task_id,
            "state": outcome.state,
            "action": outcome.action,
        },
        message="Webhook processed successfully",
    )


@router.post("/api/simulate-webhook")
async def simulate_webhook(req: SimulateWebhookRequest, request: Request) -> dict:
    """Run a synthetic provider callback through the webhook handler."""
    if not req.task_id or not req.state:
        raise HTTPException(
            status_code=400, detail="Missing required parameters: taskId and state"
        )
    payload, outcome = await _service(request).simulate_webhook(
        req.task_id, req.state, req.result_urls, req.fail_msg
    )
    return success_response(
        data={"payload": payload, "taskId": outcome.task_id, "action": outcome.action},
        message="Webhook simulated successfully",
    )


# ---------------------------------------------------------------------------
# Uploads and downloads.
# ---------------------------------------------------------------------------


@router.post("/api/upload")
async def upload_image(
    request: Request,
    file: UploadFile | None = File(default=None),
    user_id: str | None = Form(default=None, alias="userId"),
) -> dict:
    """Store an uploaded image and return its public URL.

    Raises:
        HTTPException: 400 for a missing file/userId, a disallowed type or an
            oversized file.
        StorageError: 400 when the bytes are not a readable image.
    """
    service = _service(request)
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    _require(user_id, "User ID is required")
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Only JPEG, PNG, WebP, and GIF are allowed",
        )

    data = await file.read()
    max_bytes = service.config.max_upload_bytes
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
        )

    asset = service.storage.store_user_image(
        data, file.filename or "upload", file.content_type, user_id
    )
    logger.info(f"User {user_id} uploaded {asset.key} ({asset.size} bytes)")
    return success_response(
        data={
            "url": asset.url,
            "key": asset.key,
            "size": asset.size,
            "type": asset.content_type,
            "width": asset.width,
            "height": asset.height,
        },
        message="File uploaded successfully",
    )


@router.get("/api/upload")
async def upload_limits(request: Request) -> dict:
    """Return the upload size limit and allowed content types."""
    max_bytes = _service(request).config.max_upload_bytes
    return success_response(
        data={
            "maxFileSize": max_bytes,
            "maxFileSizeMB": max_bytes // (1024 * 1024),
            "allowedTypes": sorted(ALLOWED_CONTENT_TYPES),
        }
    )


@router.post("/api/download-image")
async def download_image(req: DownloadImageRequest, request: Request) -> Response:
    """Fetch a remote image server-side and return its bytes.

    Browsers cannot download provider URLs directly because of CORS; this
    route proxies them.
    """
    image_url = _require(req.image_url, "Image URL is required")
    data, content_type = await _service(request).storage.fetch_remote(image_url)
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=31536000"},
    )


# ---------------------------------------------------------------------------
# Diagnostics.
# ---------------------------------------------------------------------------


@router.get("/api/webhook-logs")
async def get_webhook_logs(request: Request) -> dict:
    """Return recent webhook and timeout events, newest first."""
    entries = _service(request).event_log.entries()
    return success_response(data={"logs": entries, "count": len(entries)})


@router.delete("/api/webhook-logs")
async def clear_webhook_logs(request: Request) -> dict:
    _service(request).event_log.clear()
    return success_response(message="Webhook logs cleared")


@router.get("/api/debug/timeouts")
async def get_timeouts(request: Request) -> dict:
    service = _service(request)
    return success_response(
        data={
            "activeTimeouts": service.timeouts.active_count(),
            "timeoutSeconds": service.timeouts.timeout_seconds,
            "timeoutMinutes": service.config.task_timeout_minutes,
        }
    )


@router.delete("/api/debug/timeouts")
async def clear_timeouts(request: Request) -> dict:
    cleared = _service(request).timeouts.clear_all()
    return success_response(data={"cleared": cleared}, message=f"Cleared {cleared} timeout(s)")


@router.get("/api/debug/config")
async def get_debug_config(request: Request) -> dict:
    """Return the effective configuration with secrets redacted."""
    service = _service(request)
    settings = service.config
    return success_response(
        data={
            "providerBaseUrl": settings.provider_base_url,
            "hasApiKey": bool(settings.provider_api_key),
            "apiKeyLength": len(settings.provider_api_key),
            "providerConfigured": service.provider is not None,
            "webhookBaseUrl": settings.webhook_base_url,
            "webhookUrl": build_webhook_url(settings),
            "publicUrl": settings.public_url,
            "taskTimeoutSeconds": settings.task_timeout_seconds,
            "cacheTtlSeconds": settings.cache_ttl_seconds,
            "models": available_models(settings),
            "supportedSizes": ProviderClient.supported_sizes(),
        }
    )


@router.get("/api/debug/provider")
async def check_provider_connection(request: Request) -> dict:
    """Send a minimal createTask request to check the provider answers."""
    provider = _service(request).provider
    if provider is None:
        raise HTTPException(status_code=503, detail="Provider API key is not configured")
    return success_response(data=await provider.test_connection())


@router.get("/api/debug/tasks")
async def get_recent_tasks(
    request: Request,
    limit: int = Query(default=10),
    user_id: str | None = Query(default=None, alias="userId"),
) -> dict:
    """Return the most recently created tasks, optionally for one user."""
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="Limit must be between 1 and 100")
    tasks = _service(request).store.get_recent_tasks(limit=limit, user_id=user_id)
    return success_response(
        data={"tasks": [task.model_dump() for task in tasks], "count": len(tasks)}
    )


@router.post("/api/debug/tasks")
async def find_task_by_provider_id(req: ProviderLookupRequest, request: Request) -> dict:
    """Look up a task by its provider task id."""
    provider_task_id = _require(req.provider_task_id, "providerTaskId is required")
    task = _service(request).store.get_task_by_provider_id(provider_task_id)
    if task is None:
        raise HTTPException(
            status_code=404, detail=f"No task found for provider task {provider_task_id}"
        )
    return success_response(data=task.model_dump())


@router.delete("/api/debug/tasks")
async def cleanup_failed_tasks(
    request: Request, days_old: int = Query(default=7, alias="daysOld", ge=1)
) -> dict:
    """Delete failed tasks older than ``daysOld`` days."""
    deleted = _service(request).store.cleanup_old_failed_tasks(days_old)
    return success_response(data={"deleted": deleted}, message=f"Deleted {deleted} failed task(s)")


@router.get("/api/health")
async def health(
    request: Request, check_provider: bool = Query(default=False, alias="checkProvider")
) -> JSONResponse:
    """Report database reachability and in-memory counters.

    With ``checkProvider`` the provider is contacted as well; its answer is
    reported but does not change the status code.

    Returns:
        200 when the database answers, 503 otherwise.
    """
    service = _service(request)
    database_ok = service.store.health_check()
    purged = service.cache.purge_expired()
    if purged:
        logger.debug(f"Purged {purged} expired cache entries")
    body = success_response(
        data={
            "status": "healthy" if database_ok else "degraded",
            "version": __version__,
            "database": database_ok,
            "provider": "configured" if service.provider else "not configured",
            "cachedResults": service.cache.size(),
            "activeTimeouts": service.timeouts.active_count(),
            "eventConnections": service.events.connection_count(),
        }
    )
    if check_provider and service.provider is not None:
        body["data"]["providerReachable"] = await service.provider.health_check()
    body["success"] = database_ok
    return JSONResponse(status_code=200 if database_ok else 503, content=body)


# ---------------------------------------------------------------------------
# FastAPI application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: PhotogenConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build a FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        transport: Optional httpx transport for outbound requests.

    Returns:
        Configured application.  Services are created when its lifespan
        starts.
    """
    settings = settings or config
    app = FastAPI(
        title="PhotoGen",
        description="Asynchronous AI image generation and editing task service.",
        version=__version__,
        lifespan=_make_lifespan(settings, transport),
    )

    # Allow cross-origin requests so the web client can be served from a
    # different origin during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(PhotogenError, _photogen_exception_handler)

    app.include_router(router)

    # Stored images are served directly at ``/media/...``.
    settings.storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount(MEDIA_ROUTE, StaticFiles(directory=str(settings.storage_dir)), name="media")
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~photogen.core.config.config` (which
    loads from ``PHOTOGEN_SERVER_HOST`` and ``PHOTOGEN_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``photogen`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    uvicorn.run(
        "photogen.api.main:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
