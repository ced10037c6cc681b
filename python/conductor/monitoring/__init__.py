"""Read-only monitoring over the agent manager."""

from conductor.monitoring.agent_monitor import (
    AgentCard,
    AgentMonitor,
    EventLine,
    MonitorSnapshot,
    classify_event,
    format_uptime,
    summarize_event_data,
)

__all__ = [
    "AgentCard",
    "AgentMonitor",
    "EventLine",
    "MonitorSnapshot",
    "classify_event",
    "format_uptime",
    "summarize_event_data",
]
