"""AgentMonitor - read-only periodic poller over manager status and event history.

Produces ``MonitorSnapshot`` objects for dashboards and the HTTP API. It never
mutates the manager or the event bus.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from conductor.event_bus import Event, now_ms
from conductor.orchestration.agent_manager import AgentManager

logger = logging.getLogger(__name__)

SnapshotListener = Callable[["MonitorSnapshot"], Any]


# ============================================================================
# Formatting helpers
# ============================================================================


def format_uptime(ms: int) -> str:
    """Human-readable uptime, two most significant units."""
    seconds = max(0, int(ms)) // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_time(timestamp: int) -> str:
    """Local wall-clock time for an epoch-ms timestamp."""
    return datetime.fromtimestamp(timestamp / 1000).strftime("%H:%M:%S")


def classify_event(event_type: str) -> str:
    if "error" in event_type or "failed" in event_type:
        return "event-error"
    if "completed" in event_type or "registered" in event_type:
        return "event-success"
    return "event-info"


def summarize_event_data(data: Any) -> str:
    """Short one-line description of an event payload."""
    if not data:
        return ""

    if isinstance(data, dict):
        if data.get("agent_name"):
            return str(data["agent_name"])
        if data.get("task_id"):
            return f"Task: {str(data['task_id'])[:12]}..."
        if data.get("error"):
            return f"Error: {data['error']}"

    return json.dumps(data, default=str)[:50] + "..."


# ============================================================================
# Snapshot models
# ============================================================================


@dataclass(frozen=True)
class AgentCard:
    agent_id: str
    name: str
    description: str
    state: str
    enabled: bool
    tasks_completed: int
    tasks_failed: int
    average_time_ms: int
    uptime: str
    capabilities: List[str]


@dataclass(frozen=True)
class EventLine:
    time: str
    type: str
    css_class: str
    summary: str


@dataclass(frozen=True)
class MonitorSnapshot:
    taken_at: int
    total_agents: int
    active_agents: int
    tasks_processed: int
    active_tasks: int
    task_queue_size: int
    agents: List[AgentCard] = field(default_factory=list)
    events: List[EventLine] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taken_at": self.taken_at,
            "system": {
                "total_agents": self.total_agents,
                "active_agents": self.active_agents,
                "tasks_processed": self.tasks_processed,
                "active_tasks": self.active_tasks,
                "task_queue_size": self.task_queue_size,
            },
            "agents": [asdict(card) for card in self.agents],
            "events": [asdict(line) for line in self.events],
        }


# ============================================================================
# Monitor
# ============================================================================


class AgentMonitor:
    """Polls an AgentManager on a fixed interval and keeps the latest snapshot."""

    def __init__(
        self,
        manager: AgentManager,
        refresh_interval: float = 2.0,
        event_limit: int = 20,
    ):
        self.manager = manager
        self.refresh_interval = refresh_interval
        self.event_limit = event_limit

        self._latest: Optional[MonitorSnapshot] = None
        self._listeners: List[SnapshotListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def latest(self) -> Optional[MonitorSnapshot]:
        return self._latest

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, callback: SnapshotListener) -> Callable[[], None]:
        """Call ``callback`` with every new snapshot; returns a remover."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def refresh(self) -> MonitorSnapshot:
        """Take a snapshot now."""
        status = self.manager.get_system_status()

        cards = [
            AgentCard(
                agent_id=agent.agent_id,
                name=agent.name,
                description=agent.description or "No description",
                state=agent.state.value,
                enabled=agent.enabled,
                tasks_completed=agent.stats.tasks_completed,
                tasks_failed=agent.stats.tasks_failed,
                average_time_ms=round(agent.stats.average_execution_time),
                uptime=format_uptime(agent.uptime),
                capabilities=list(agent.capabilities),
            )
            for agent in status.agents
        ]

        events: List[Event] = self.manager.event_bus.get_history(limit=self.event_limit)
        lines = [
            EventLine(
                time=format_time(event.timestamp),
                type=event.type,
                css_class=classify_event(event.type),
                summary=summarize_event_data(event.data),
            )
            for event in reversed(events)
        ]

        snapshot = MonitorSnapshot(
            taken_at=now_ms(),
            total_agents=status.stats.total_agents,
            active_agents=status.stats.active_agents,
            tasks_processed=status.stats.total_tasks_processed,
            active_tasks=status.stats.active_tasks,
            task_queue_size=status.task_queue_size,
            agents=cards,
            events=lines,
        )
        self._latest = snapshot
        return snapshot

    async def update(self) -> MonitorSnapshot:
        """Take a snapshot and hand it to every listener."""
        snapshot = self.refresh()
        for callback in list(self._listeners):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Monitor listener failed")
        return snapshot

    def start(self) -> None:
        """Start the periodic refresh loop on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"AgentMonitor started (interval={self.refresh_interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("AgentMonitor stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.update()
            except Exception:
                logger.exception("Monitor refresh failed")
            await asyncio.sleep(self.refresh_interval)
