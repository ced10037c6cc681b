"""Agent base class, lifecycle states and built-in agents."""

from conductor.agents.base_agent import (
    AgentState,
    AgentStats,
    AgentStatus,
    BaseAgent,
    ErrorRecord,
)
from conductor.agents.builtin import EchoAgent, FunctionAgent

__all__ = [
    "AgentState",
    "AgentStats",
    "AgentStatus",
    "BaseAgent",
    "ErrorRecord",
    "EchoAgent",
    "FunctionAgent",
]
