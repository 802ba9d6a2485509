"""Exception types raised by the PhotoGen services.

Every error carries a short machine-readable ``code`` alongside the
human-readable message, plus an optional ``details`` mapping with the
context needed to debug the failure.  The HTTP layer maps each subclass to
a status code (see ``photogen.api.main``).
"""

from __future__ import annotations

from typing import Any


class PhotogenError(Exception):
    """Base class for service errors.

    Attributes:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``"HTTP_502"``).
        details: Optional extra context.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class AIServiceError(PhotogenError):
    """The image-generation provider rejected or failed a request."""


class DatabaseError(PhotogenError):
    """A task store operation failed."""


class StorageError(PhotogenError):
    """Storing or fetching an image asset failed."""


class TaskNotFoundError(PhotogenError):
    """No task matches the given id (or it belongs to another user)."""


class TaskStateError(PhotogenError):
    """The requested transition is not allowed from the task's current status."""
