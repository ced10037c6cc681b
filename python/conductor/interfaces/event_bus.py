"""Interface for the event bus and pub/sub messaging.

Decouples components by allowing communication through emitted events.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable


class EventType(str, Enum):
    """Standard event types emitted by the orchestration core."""
    # Agent lifecycle
    AGENT_REGISTERED = "agent:registered"
    AGENT_UNREGISTERED = "agent:unregistered"
    AGENT_STARTED = "agent:started"
    AGENT_STOPPED = "agent:stopped"
    AGENT_ERROR = "agent:error"
    AGENT_RESET = "agent:reset"
    # Task lifecycle
    TASK_CREATED = "task:created"
    TASK_ASSIGNED = "task:assigned"
    TASK_STARTED = "task:started"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    # System
    SYSTEM_READY = "system:ready"
    SYSTEM_ERROR = "system:error"


EventName = Union[str, EventType]
Listener = Callable[[Any], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


def event_name(event_type: EventName) -> str:
    """Normalise an ``EventType`` member or plain string to its string form."""
    if isinstance(event_type, EventType):
        return event_type.value
    return event_type


@runtime_checkable
class IEventBus(Protocol):
    """Interface for publish-subscribe event messaging.

    Listeners for one event type are invoked one at a time, highest priority
    first, each awaited before the next starts.
    """

    def subscribe(
        self,
        event_type: EventName,
        callback: Listener,
        *,
        once: bool = False,
        priority: int = 0,
    ) -> Unsubscribe:
        """Register a listener.

        Args:
            event_type: Type of events to listen for
            callback: Sync or async callable receiving the ``Event``
            once: Remove the listener after its first invocation
            priority: Higher fires first

        Returns:
            Function that removes the listener when called
        """
        ...

    def unsubscribe(self, event_type: EventName, listener_id: str) -> None:
        """Remove a listener; unknown ids are ignored."""
        ...

    async def emit(self, event_type: EventName, data: Any = None) -> Any:
        """Emit an event to every current listener of its type."""
        ...

    def get_history(
        self,
        event_type: Optional[EventName] = None,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """Return retained events matching the filter."""
        ...

    def get_stats(self) -> Dict[str, Any]:
        """Return listener and history counters."""
        ...

    def set_max_history_size(self, size: int) -> None:
        """Change how many events are retained, keeping the newest ones."""
        ...
