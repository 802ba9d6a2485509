"""Client-side helpers for consuming the PhotoGen task API."""

from photogen.client.poller import PollResult, TaskPoller

__all__ = ["PollResult", "TaskPoller"]
