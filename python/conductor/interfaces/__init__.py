"""Conductor interface contracts (Protocol-based dependency injection)."""

from conductor.interfaces.event_bus import EventType, IEventBus, event_name
from conductor.interfaces.agent import IAgent
from conductor.interfaces.state_store import IStateStore

__all__ = [
    "EventType",
    "IEventBus",
    "event_name",
    "IAgent",
    "IStateStore",
]
