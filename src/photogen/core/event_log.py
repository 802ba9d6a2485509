"""Bounded in-memory log of webhook and timeout events.

Entries are kept newest first and surfaced through ``/api/webhook-logs`` to
debug callback delivery without digging through server logs.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class EventLog:
    """Keep the ``max_entries`` most recent events."""

    def __init__(self, max_entries: int = 50):
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def add(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "type": event_type,
            "data": data or {},
        }
        with self._lock:
            self._entries.appendleft(entry)
        logger.debug(f"Event {event_type}: {entry['data']}")

    def entries(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
