"""Session "changed" notifications.

Hosts observe session state changes (login, logout, refresh, demotion,
account selection) in one of two ways:
- add_listener(callback): callback(event) is called, awaited if it
  returns an awaitable
- subscribe(): returns an asyncio.Queue that receives every event

Events are delivered only after the operation's persistence completed.
A failing listener is logged and never affects the operation that fired it.
"""

from __future__ import annotations

__all__ = [
    "ChangeListener",
    "ChangeNotifier",
    "SessionChanged",
]

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from cloud_account.constants import EVENT_QUEUE_MAXSIZE
from cloud_account.telemetry.system_logger import get_system_logger
from cloud_account.utils.callbacks import maybe_await

ChangeListener = Callable[["SessionChanged"], "Awaitable[Any] | Any"]


@dataclass(frozen=True)
class SessionChanged:
    """A session state change.

    Attributes:
        reason: Operation that fired the event (e.g., "login", "logout",
            "get_access_token", "select_account", "refresh_failed").
        timestamp: Epoch seconds when the event was created.
    """

    reason: str
    timestamp: float = field(default_factory=time.time)


class ChangeNotifier:
    """Observer list plus queue subscribers for SessionChanged events."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []
        self._subscribers: set[asyncio.Queue[SessionChanged]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._subscribers)

    def add_listener(self, listener: ChangeListener) -> ChangeListener:
        """Register a listener. Returns it so this can be used as a decorator."""
        self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: ChangeListener) -> None:
        """Unregister a listener. Unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self) -> asyncio.Queue[SessionChanged]:
        """Subscribe to events.

        Returns:
            Queue that will receive events. Call unsubscribe() when done.
        """
        queue: asyncio.Queue[SessionChanged] = asyncio.Queue(maxsize=EVENT_QUEUE_MAXSIZE)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SessionChanged]) -> None:
        """Unsubscribe a queue returned by subscribe()."""
        self._subscribers.discard(queue)

    async def notify(self, reason: str) -> SessionChanged:
        """Deliver a SessionChanged event to all listeners and subscribers.

        Args:
            reason: Operation that changed (or may have changed) the session.

        Returns:
            The delivered event.
        """
        event = SessionChanged(reason=reason)
        logger = get_system_logger()

        for listener in list(self._listeners):
            try:
                await maybe_await(listener(event))
            except Exception as e:
                logger.warning(
                    {
                        "event": "change_listener_failed",
                        "message": f"Session change listener failed: {e}",
                        "reason": reason,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    }
                )

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    {
                        "event": "change_queue_full",
                        "message": f"Change queue full, dropping event: {reason}",
                        "reason": reason,
                    }
                )

        return event
