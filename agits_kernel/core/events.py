"""
Event Emitter — best-effort notifications for observers.

Components hold a mapping of event name → listeners and notify them
synchronously. Delivery is fire-and-forget: a listener that raises is logged
and skipped, and never affects the emitting call.
"""

from typing import Any, Callable, Dict, List

from agits_kernel.core.logging import get_logger

_logger = get_logger("core.events")

Listener = Callable[..., Any]


class EventEmitter:
    """Observer registry mixed into the engine and the agent."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        """Register a listener for an event."""
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> bool:
        """Remove a listener. Returns True if it was registered."""
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> int:
        """
        Notify every listener of an event.
        Returns the number of listeners that completed without raising.
        """
        delivered = 0
        # Snapshot so listeners may unsubscribe themselves
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args)
                delivered += 1
            except Exception as e:
                _logger.warning(
                    "events.listener_failed",
                    event_name=event,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                )
        return delivered
