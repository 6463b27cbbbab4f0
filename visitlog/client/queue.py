"""
queue.py — in-memory buffer of page visits waiting to be flushed.
"""
from datetime import datetime
from typing import Optional


class EventQueue:
    """
    Holds {path, timestamp} events for one tracker.

    Consecutive visits to the exact same path+query are recorded once. drain()
    empties the queue before the batch is delivered, so events recorded while a
    flush is in flight go into the next batch.
    """

    def __init__(self) -> None:
        self._events: list[dict] = []
        self._last_path: Optional[str] = None

    def __len__(self) -> int:
        return len(self._events)

    @property
    def last_path(self) -> Optional[str]:
        return self._last_path

    def record(self, path: str, now: datetime) -> bool:
        if path == self._last_path:
            return False
        self._last_path = path
        self._events.append({"path": path, "timestamp": now.isoformat()})
        return True

    def drain(self) -> list[dict]:
        events, self._events = self._events, []
        return events

    def discard(self) -> None:
        """Drop queued events and forget the last path (new attribution context)."""
        self._events = []
        self._last_path = None
