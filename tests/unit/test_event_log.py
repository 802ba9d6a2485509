"""Tests for photogen.core.event_log."""

from __future__ import annotations

from photogen.core.event_log import EventLog


class TestEventLog:
    """Bounded newest-first event log."""

    def test_newest_first(self):
        log = EventLog()
        log.add("webhook-received", {"providerTaskId": "p1"})
        log.add("webhook-processed", {"taskId": "t1"})
        entries = log.entries()
        assert [e["type"] for e in entries] == ["webhook-processed", "webhook-received"]
        assert entries[1]["data"] == {"providerTaskId": "p1"}
        assert "timestamp" in entries[0]

    def test_bounded(self):
        """Only the most recent max_entries are kept."""
        log = EventLog(max_entries=3)
        for i in range(5):
            log.add("event", {"i": i})
        assert len(log) == 3
        assert [e["data"]["i"] for e in log.entries()] == [4, 3, 2]

    def test_default_data_is_empty_dict(self):
        log = EventLog()
        log.add("all-timeouts-cleared")
        assert log.entries()[0]["data"] == {}

    def test_clear(self):
        log = EventLog()
        log.add("event")
        log.clear()
        assert log.entries() == []
