"""Core services for the PhotoGen task service.

This package holds everything below the HTTP layer:

- **PhotogenConfig / config**: configuration management using Pydantic Settings
- **TaskStore**: SQLite-backed task records
- **ProviderClient**: async client for the image provider jobs API
- **AssetStorage**: local image storage for uploads and generated results
- **TaskResultCache**: short-lived cache of resolved task outcomes
- **TaskTimeoutGuard**: fails tasks whose webhook never arrives
- **TaskEventHub**: server-sent event fan-out
- **TaskService**: the task lifecycle tying the pieces together

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration, all settings prefixed with PHOTOGEN_
   - Automatic directory creation

2. **Persistence Layer** (task_store.py, storage.py):
   - Task rows in SQLite, JSON columns for list/dict fields
   - Image bytes on disk with ``.meta.json`` sidecars

3. **Provider Layer** (provider.py):
   - ``createTask`` / ``recordInfo`` calls with envelope validation
   - Size mapping and user-facing error translation

4. **Lifecycle Layer** (lifecycle.py, task_timeout.py, task_cache.py,
   events.py, event_log.py, progress.py):
   - Webhook resolution, timeouts, quick results, push updates

Usage Example
-------------
    from photogen.core import TaskStore, config

    store = TaskStore(config.database_path)
    task_id = store.create_task(user_id="u1", task_type="generate", input_prompt="a cat")
"""

from photogen.core.config import PhotogenConfig, config
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
from photogen.core.lifecycle import TaskService, WebhookOutcome
from photogen.core.models import TaskProgress, TaskRecord, TaskResult, TaskStats
from photogen.core.provider import ProviderClient
from photogen.core.storage import AssetStorage
from photogen.core.task_cache import TaskResultCache
from photogen.core.task_store import TaskStore
from photogen.core.task_timeout import TaskTimeoutGuard

__all__ = [
    "AIServiceError",
    "AssetStorage",
    "DatabaseError",
    "EventLog",
    "PhotogenConfig",
    "PhotogenError",
    "ProviderClient",
    "StorageError",
    "TaskEventHub",
    "TaskNotFoundError",
    "TaskProgress",
    "TaskRecord",
    "TaskResult",
    "TaskResultCache",
    "TaskService",
    "TaskStateError",
    "TaskStats",
    "TaskStore",
    "TaskTimeoutGuard",
    "WebhookOutcome",
    "config",
]
