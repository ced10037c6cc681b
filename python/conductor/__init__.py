"""Conductor: event-driven orchestration of capability-based agents."""

from conductor.agents import BaseAgent, EchoAgent, FunctionAgent
from conductor.event_bus import Event, InMemoryEventBus
from conductor.interfaces import EventType
from conductor.orchestration.agent_manager import AgentManager, ManagerConfig
from conductor.orchestration.task import Task

__version__ = "0.1.0"

__all__ = [
    "AgentManager",
    "BaseAgent",
    "EchoAgent",
    "Event",
    "EventType",
    "FunctionAgent",
    "InMemoryEventBus",
    "ManagerConfig",
    "Task",
]
