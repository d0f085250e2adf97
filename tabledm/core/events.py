"""Realtime push channel for combat state changes.

Observers (the SSE stream route, tests, anything in-process) subscribe
per session and receive a CombatEvent after every committed mutation.
Publishing happens after the database commit, so an observer never sees
a state that was rolled back.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..enums import CombatEventType

logger = logging.getLogger(__name__)


@dataclass
class CombatEvent:
    """A committed combat state change."""
    session_id: str
    event_type: CombatEventType
    combat_state: dict[str, Any]
    version: int
    phase: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "event": self.event_type.value,
            "combat_state": self.combat_state,
            "version": self.version,
            "phase": self.phase,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[CombatEvent], None]


class CombatBroadcaster:
    """Fan-out of combat events to per-session subscribers.

    Usage:
        broadcaster = get_broadcaster()
        broadcaster.subscribe(session_id, callback)
        ...
        broadcaster.unsubscribe(session_id, callback)
    """

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id: str, callback: Subscriber) -> None:
        """Register a synchronous callback for one session's events."""
        with self._lock:
            self._subscribers.setdefault(session_id, []).append(callback)

    def unsubscribe(self, session_id: str, callback: Subscriber) -> None:
        with self._lock:
            callbacks = self._subscribers.get(session_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(session_id, None)

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(session_id, []))

    def open_queue(self, session_id: str) -> tuple[asyncio.Queue, Subscriber]:
        """Subscribe an asyncio.Queue bound to the running event loop.

        Events may be published from worker threads, so they are handed to
        the loop with call_soon_threadsafe.

        Returns:
            (queue, callback); pass the callback to unsubscribe() when done
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[CombatEvent] = asyncio.Queue()

        def _enqueue(event: CombatEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        self.subscribe(session_id, _enqueue)
        return queue, _enqueue

    def publish(self, event: CombatEvent) -> None:
        """Deliver an event to every subscriber of its session.

        A failing subscriber is logged and skipped; it never affects the
        mutation that produced the event.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(event.session_id, []))

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Combat event subscriber failed for {event.session_id}: {e}")


# Singleton instance
_broadcaster: CombatBroadcaster | None = None


def get_broadcaster() -> CombatBroadcaster:
    """Get the global combat broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = CombatBroadcaster()
    return _broadcaster
