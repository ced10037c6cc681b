"""In-memory event bus satisfying the IEventBus protocol.

Used for intra-process pub/sub signaling between the agent manager, agents
and observers. Listeners run sequentially in descending priority order and
each one is awaited before the next starts; a failing listener is logged and
never stops the others. The last ``max_history_size`` events are retained for
diagnostics only.
"""

import inspect
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from conductor.exceptions import EventBusError
from conductor.interfaces.event_bus import EventName, Listener, Unsubscribe, event_name

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 100


def now_ms() -> int:
    """Wall-clock epoch time in milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class Event:
    """A single emitted event."""
    type: str
    data: Any
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


@dataclass
class ListenerRegistration:
    """A subscribed callback and its options."""
    callback: Listener
    once: bool
    priority: int
    id: str


class InMemoryEventBus:
    """Async event bus for single-process use.

    Satisfies ``conductor.interfaces.IEventBus`` via structural subtyping.
    """

    def __init__(self, max_history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if max_history_size < 1:
            raise EventBusError(f"History size must be positive, got {max_history_size}")
        self._listeners: Dict[str, List[ListenerRegistration]] = {}
        self._history: Deque[Event] = deque(maxlen=max_history_size)
        self.max_history_size = max_history_size

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(
        self,
        event_type: EventName,
        callback: Listener,
        *,
        once: bool = False,
        priority: int = 0,
    ) -> Unsubscribe:
        """Subscribe ``callback`` to ``event_type``; returns an unsubscribe function."""
        if not callable(callback):
            raise EventBusError(f"Listener for {event_name(event_type)} is not callable")

        name = event_name(event_type)
        registration = ListenerRegistration(
            callback=callback,
            once=once,
            priority=priority,
            id=self._generate_listener_id(),
        )
        listeners = self._listeners.setdefault(name, [])
        listeners.append(registration)
        # sort is stable: equal priorities keep registration order
        listeners.sort(key=lambda listener: listener.priority, reverse=True)

        def unsubscribe() -> None:
            self.unsubscribe(name, registration.id)

        unsubscribe.listener_id = registration.id  # type: ignore[attr-defined]
        return unsubscribe

    def once(self, event_type: EventName, callback: Listener, *, priority: int = 0) -> Unsubscribe:
        """Subscribe for a single invocation."""
        return self.subscribe(event_type, callback, once=True, priority=priority)

    def unsubscribe(self, event_type: EventName, listener_id: str) -> None:
        name = event_name(event_type)
        listeners = self._listeners.get(name)
        if listeners is None:
            return

        for index, listener in enumerate(listeners):
            if listener.id == listener_id:
                del listeners[index]
                break

        if not listeners:
            del self._listeners[name]

    def clear(self, event_type: Optional[EventName] = None) -> None:
        """Remove all listeners for one event type, or for every type."""
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_name(event_type), None)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def emit(self, event_type: EventName, data: Any = None) -> Event:
        """Emit an event and await every listener in priority order."""
        name = event_name(event_type)
        event = Event(type=name, data=data, timestamp=now_ms())
        self._history.append(event)

        listeners = list(self._listeners.get(name, ()))
        if not listeners:
            return event

        fired_once: List[str] = []
        for listener in listeners:
            if listener.once:
                fired_once.append(listener.id)
            try:
                result = listener.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error in event listener %s for %s", listener.id, name)

        for listener_id in fired_once:
            self.unsubscribe(name, listener_id)

        return event

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_history(
        self,
        event_type: Optional[EventName] = None,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Event]:
        """Return retained events, oldest first.

        Args:
            event_type: Only events of this type
            since: Only events with ``timestamp >= since`` (epoch ms)
            limit: Keep only the most recent ``limit`` matches
        """
        history = list(self._history)

        if event_type is not None:
            name = event_name(event_type)
            history = [e for e in history if e.type == name]

        if since is not None:
            history = [e for e in history if e.timestamp >= since]

        if limit and limit > 0:
            history = history[-limit:]

        return history

    def set_max_history_size(self, size: int) -> None:
        """Resize the history window; when shrinking, the oldest events go."""
        if size < 1:
            raise EventBusError(f"History size must be positive, got {size}")
        self._history = deque(self._history, maxlen=size)
        self.max_history_size = size

    def listener_count(self, event_type: Optional[EventName] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_name(event_type), ()))
        return sum(len(listeners) for listeners in self._listeners.values())

    def get_stats(self) -> Dict[str, Any]:
        registered = list(self._listeners.keys())
        return {
            "total_listeners": self.listener_count(),
            "event_types": len(registered),
            "history_size": len(self._history),
            "registered_events": registered,
        }

    @staticmethod
    def _generate_listener_id() -> str:
        return f"listener_{now_ms()}_{uuid.uuid4().hex[:9]}"
