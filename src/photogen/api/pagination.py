"""Pagination and response envelope helpers for the task API.

Every JSON route answers with the same envelope::

    {"success": true, "data": ..., "message": "..."}
    {"success": false, "error": "..."}

Task listings use offset/limit paging rather than page numbers because the
polling client asks for "the newest N tasks" and steps through with offsets.
"""

from __future__ import annotations

from typing import Any


def success_response(data: Any = None, message: str | None = None, **extra: Any) -> dict:
    """Build a success envelope.

    Args:
        data: Payload placed under ``data`` (omitted when None).
        message: Optional human-readable message.
        **extra: Additional top-level keys (e.g. ``pagination``).
    """
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body


def error_response(error: str, **extra: Any) -> dict:
    body: dict[str, Any] = {"success": False, "error": error}
    body.update(extra)
    return body


def pagination_info(total: int, limit: int, offset: int, returned: int) -> dict:
    """Describe one offset/limit page of a listing.

    Args:
        total: Number of rows matching the filter.
        limit: Requested page size.
        offset: Requested offset.
        returned: Number of rows actually returned.

    Returns:
        Dictionary with ``total``, ``limit``, ``offset``, ``hasMore`` and
        ``pages``.
    """
    pages = (total + limit - 1) // limit if total > 0 else 1
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "hasMore": offset + returned < total,
        "pages": pages,
    }
