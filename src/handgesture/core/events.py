"""
Lightweight event bus for delivering pipeline output to subscribers.

Usage:
    bus = EventBus()
    bus.subscribe(Events.GESTURE_CHANGED, my_handler)
    bus.emit(Events.GESTURE_CHANGED, event=gesture_event)
"""

import time
import logging
import threading
from collections import defaultdict
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe publish/subscribe event bus.

    Dispatch is synchronous on the emitting thread, highest priority
    first. A listener that raises is logged and skipped; the remaining
    listeners still run.
    """

    def __init__(self, max_history: int = 100):
        self._listeners = defaultdict(list)  # event_name -> [(priority, callback)]
        self._lock = threading.Lock()
        self._event_history = []
        self._max_history = max_history
        self._enabled = True
        self._error_count = 0

    def subscribe(self, event_name: str, callback: Callable, priority: int = 0):
        """Register a listener for an event.

        Args:
            event_name: Event to listen for
            callback: Function to call. Receives **kwargs from emit().
            priority: Higher priority callbacks run first (default 0)
        """
        with self._lock:
            self._listeners[event_name].append((priority, callback))
            # Sort by priority descending (highest first)
            self._listeners[event_name].sort(key=lambda x: -x[0])
        logger.debug("Subscribed to '%s': %s (priority=%d)",
                     event_name, _callback_name(callback), priority)

    def unsubscribe(self, event_name: str, callback: Callable):
        """Remove a listener for an event."""
        with self._lock:
            self._listeners[event_name] = [
                (p, cb) for p, cb in self._listeners[event_name] if cb is not callback
            ]

    def emit(self, event_name: str, **kwargs) -> int:
        """Emit an event to all registered listeners.

        Args:
            event_name: Event name to emit
            **kwargs: Data passed to all listeners

        Returns:
            Number of listeners that handled the event without error
        """
        if not self._enabled:
            return 0

        with self._lock:
            listeners = list(self._listeners.get(event_name, []))
            self._event_history.append({
                "event": event_name,
                "time": time.time(),
                "data_keys": list(kwargs.keys()),
            })
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history:]

        delivered = 0
        for priority, callback in listeners:
            try:
                callback(**kwargs)
                delivered += 1
            except Exception as e:
                self._error_count += 1
                logger.error("Event handler error [%s -> %s]: %s",
                             event_name, _callback_name(callback), e)
        return delivered

    def clear(self, event_name: Optional[str] = None):
        """Remove all listeners, optionally for a specific event."""
        with self._lock:
            if event_name:
                self._listeners.pop(event_name, None)
            else:
                self._listeners.clear()

    def set_enabled(self, enabled: bool):
        self._enabled = enabled

    @property
    def registered_events(self) -> list:
        """List all events with registered listeners."""
        with self._lock:
            return [name for name, cbs in self._listeners.items() if cbs]

    @property
    def listener_count(self) -> int:
        """Total number of registered listeners."""
        with self._lock:
            return sum(len(cbs) for cbs in self._listeners.values())

    @property
    def error_count(self) -> int:
        return self._error_count

    def get_history(self, last_n: int = 10) -> list:
        """Get recent event history."""
        with self._lock:
            return self._event_history[-last_n:]


def _callback_name(callback: Callable) -> str:
    return getattr(callback, "__name__", repr(callback))


# =============================================================================
# Standard Event Names (constants to avoid typos)
# =============================================================================

class Events:
    """Standard event names emitted by the pipeline."""

    # Gesture events; payload: event=GestureEvent
    GESTURE_CHANGED = "gesture_changed"

    # Hand presence; payload: slot=int, pose=HandPose / slot=int
    HAND_DETECTED = "hand_detected"
    HAND_LOST = "hand_lost"

    # Lifecycle
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_STOPPED = "pipeline_stopped"
