"""
BaseAgent - foundation class for every agent managed by the AgentManager.

State transitions:
    initializing -> idle                  (initialize succeeded)
    initializing -> error                 (initialize hook raised)
    idle -> busy -> idle                  (task succeeded, or claim released)
    busy -> error                         (task failed)
    error -> idle                         (explicit reset only)
    any non-stopped state -> stopped      (shutdown, terminal)

``admit`` is the single admission gate and ``execute`` goes through it: an
agent never queues work internally, it accepts a task or rejects it at once.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from conductor.exceptions import (
    AgentBusyError,
    AgentDisabledError,
    AgentStateError,
)
from conductor.interfaces.event_bus import EventName, EventType, IEventBus, Unsubscribe
from conductor.orchestration.task import Task

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class AgentState(str, Enum):
    """Lifecycle states for agents."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    BUSY = "busy"
    ERROR = "error"
    STOPPED = "stopped"


_ALLOWED_TRANSITIONS: Dict[AgentState, FrozenSet[AgentState]] = {
    AgentState.INITIALIZING: frozenset({AgentState.IDLE, AgentState.ERROR, AgentState.STOPPED}),
    AgentState.IDLE: frozenset({AgentState.BUSY, AgentState.STOPPED}),
    AgentState.BUSY: frozenset({AgentState.IDLE, AgentState.ERROR, AgentState.STOPPED}),
    AgentState.ERROR: frozenset({AgentState.IDLE, AgentState.STOPPED}),
    AgentState.STOPPED: frozenset(),
}


@dataclass(frozen=True)
class ErrorRecord:
    """Last failure seen by an agent."""
    message: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "timestamp": self.timestamp}


@dataclass(frozen=True)
class AgentStats:
    """Execution statistics; replaced on every update, never mutated.

    Times are in milliseconds.
    """
    tasks_completed: int = 0
    tasks_failed: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    last_error: Optional[ErrorRecord] = None

    @property
    def total_tasks(self) -> int:
        return self.tasks_completed + self.tasks_failed

    def record(self, success: bool, execution_time: float, error: Optional[BaseException] = None) -> "AgentStats":
        """Return new stats with one more finished task folded in."""
        completed = self.tasks_completed + (1 if success else 0)
        failed = self.tasks_failed + (0 if success else 1)
        total_time = self.total_execution_time + execution_time
        total_tasks = completed + failed
        last_error = self.last_error
        if not success:
            last_error = ErrorRecord(
                message=_error_message(error) if error is not None else "Unknown error",
                timestamp=_now_ms(),
            )
        return replace(
            self,
            tasks_completed=completed,
            tasks_failed=failed,
            total_execution_time=total_time,
            average_execution_time=total_time / total_tasks if total_tasks else 0.0,
            last_error=last_error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "total_execution_time": self.total_execution_time,
            "average_execution_time": self.average_execution_time,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }


@dataclass(frozen=True)
class AgentStatus:
    """Point-in-time view of one agent."""
    agent_id: str
    name: str
    description: str
    version: str
    state: AgentState
    enabled: bool
    capabilities: List[str]
    stats: AgentStats
    current_task: Optional[str]
    uptime: int
    last_activity: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "state": self.state.value,
            "enabled": self.enabled,
            "capabilities": list(self.capabilities),
            "stats": self.stats.to_dict(),
            "current_task": self.current_task,
            "uptime": self.uptime,
            "last_activity": self.last_activity,
        }


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or type(error).__name__


class BaseAgent:
    """
    Base class that every agent extends.

    Subclasses implement ``_execute_task`` and may override the
    ``on_initialize`` / ``on_shutdown`` hooks and ``can_handle``.
    """

    def __init__(
        self,
        agent_id: Optional[str] = None,
        name: str = "Unnamed Agent",
        description: str = "",
        capabilities: Iterable[str] = (),
        version: str = "1.0.0",
        enabled: bool = True,
    ):
        self.agent_id = agent_id or self._generate_agent_id()
        self.name = name
        self.description = description
        self.capabilities: FrozenSet[str] = frozenset(capabilities)
        self.version = version

        self.enabled = enabled
        self.start_time: Optional[int] = None
        self.last_activity_time: Optional[int] = None

        self._state = AgentState.INITIALIZING
        self._stats = AgentStats()
        self._current_task: Optional[Task] = None
        self._event_bus: Optional[IEventBus] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def stats(self) -> AgentStats:
        return self._stats

    @property
    def current_task(self) -> Optional[Task]:
        return self._current_task

    @property
    def event_bus(self) -> Optional[IEventBus]:
        return self._event_bus

    @property
    def is_available(self) -> bool:
        """True when ``admit`` would accept a task right now."""
        return self.enabled and self._state is AgentState.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Run the setup hook and become idle."""
        if self._state is AgentState.STOPPED:
            raise AgentStateError(f"Agent {self.name} is stopped and cannot be initialized")
        if self._state is not AgentState.INITIALIZING:
            logger.warning(f"Agent {self.name} already initialized (state={self._state.value})")
            return

        self.start_time = _now_ms()
        try:
            await self.on_initialize()
        except Exception as e:
            self._stats = replace(
                self._stats,
                last_error=ErrorRecord(message=_error_message(e), timestamp=_now_ms()),
            )
            self._transition(AgentState.ERROR)
            logger.error(f"Agent {self.name} failed to initialize: {e}")
            await self._emit_event(EventType.AGENT_ERROR, {
                "agent_id": self.agent_id,
                "name": self.name,
                "error": _error_message(e),
            })
            raise

        self._transition(AgentState.IDLE)
        logger.debug(f"Agent {self.name} ({self.agent_id}) initialized")

    async def shutdown(self) -> None:
        """Run the cleanup hook and stop for good."""
        if self._state is AgentState.STOPPED:
            return
        try:
            await self.on_shutdown()
        finally:
            self._transition(AgentState.STOPPED)
            self._current_task = None
            logger.debug(f"Agent {self.name} ({self.agent_id}) stopped")

    async def reset(self) -> None:
        """Clear the error state so the agent becomes selectable again.

        Statistics are kept; use ``reset_stats`` to zero them.
        """
        if self._state is AgentState.IDLE:
            return
        if self._state is not AgentState.ERROR:
            raise AgentStateError(
                f"Agent {self.name} cannot be reset from state {self._state.value}"
            )
        self._transition(AgentState.IDLE)
        logger.info(f"Agent {self.name} ({self.agent_id}) reset to idle")
        await self._emit_event(EventType.AGENT_RESET, {
            "agent_id": self.agent_id,
            "name": self.name,
        })

    def reset_stats(self) -> None:
        self._stats = AgentStats()

    async def on_initialize(self) -> None:
        """Setup hook; override in subclasses."""

    async def on_shutdown(self) -> None:
        """Cleanup hook; override in subclasses."""

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def can_handle(self, task: Task) -> bool:
        """Default capability check: the task type must be declared."""
        if task is None or not getattr(task, "task_type", None):
            return False
        return task.task_type in self.capabilities

    async def execute(self, task: Task) -> Any:
        """Execute a task, updating state, statistics and lifecycle events."""
        started = self.admit(task)
        return await self.run_admitted(task, started)

    def admit(self, task: Task) -> float:
        """Claim the agent for ``task`` or reject it.

        Runs without suspending, so a dispatcher that selects and admits in
        one step can never hand the same idle agent to two tasks. Returns the
        ``perf_counter`` start mark that ``run_admitted`` expects.

        Raises:
            AgentDisabledError: If the agent is disabled
            AgentBusyError: If the agent is already running a task
            AgentStateError: If the agent is not idle
        """
        if not self.enabled:
            raise AgentDisabledError(f"Agent {self.name} is disabled")

        if self._state is AgentState.BUSY:
            raise AgentBusyError(f"Agent {self.name} is busy")

        if self._state is not AgentState.IDLE:
            raise AgentStateError(
                f"Agent {self.name} cannot accept tasks in state {self._state.value}"
            )

        self._transition(AgentState.BUSY)
        self._current_task = task
        self.last_activity_time = _now_ms()
        return time.perf_counter()

    def release_admission(self, task: Task) -> None:
        """Give back a claim whose task never started running."""
        if self._current_task is task:
            self._current_task = None
        if self._state is AgentState.BUSY:
            self._transition(AgentState.IDLE)

    async def run_admitted(self, task: Task, started: float) -> Any:
        """Run a task previously claimed with ``admit``."""
        try:
            await self._emit_event(EventType.TASK_STARTED, {
                "agent_id": self.agent_id,
                "task_id": task.task_id,
                "task": task,
            })

            result = await self._execute_task(task)
        except asyncio.CancelledError:
            self._finish(False, started, asyncio.CancelledError("cancelled"))
            logger.warning(f"Agent {self.name} task {task.task_id} was cancelled")
            await self._emit_event(EventType.TASK_FAILED, {
                "agent_id": self.agent_id,
                "task_id": task.task_id,
                "error": "cancelled",
            })
            raise
        except Exception as e:
            execution_time = self._finish(False, started, e)
            logger.warning(
                f"Agent {self.name} failed task {task.task_id} after {execution_time:.1f}ms: {e}"
            )
            await self._emit_event(EventType.TASK_FAILED, {
                "agent_id": self.agent_id,
                "task_id": task.task_id,
                "error": _error_message(e),
            })
            raise

        execution_time = self._finish(True, started)
        await self._emit_event(EventType.TASK_COMPLETED, {
            "agent_id": self.agent_id,
            "task_id": task.task_id,
            "result": result,
            "execution_time": execution_time,
        })
        return result

    async def _execute_task(self, task: Task) -> Any:
        """Actual task logic; must be overridden."""
        raise NotImplementedError(f"Agent {self.name} must implement _execute_task")

    def _finish(self, success: bool, started: float, error: Optional[BaseException] = None) -> float:
        execution_time = (time.perf_counter() - started) * 1000
        self._stats = self._stats.record(success, execution_time, error)
        self._current_task = None
        # shutdown() may have stopped the agent while the task was running
        if self._state is AgentState.BUSY:
            self._transition(AgentState.IDLE if success else AgentState.ERROR)
        return execution_time

    async def learn(self, feedback: Any) -> None:
        """Feedback hook; the default ignores feedback."""

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    async def enable(self) -> None:
        self.enabled = True
        await self._emit_event(EventType.AGENT_STARTED, {
            "agent_id": self.agent_id,
            "name": self.name,
        })

    async def disable(self) -> None:
        self.enabled = False
        await self._emit_event(EventType.AGENT_STOPPED, {
            "agent_id": self.agent_id,
            "name": self.name,
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> AgentStatus:
        return AgentStatus(
            agent_id=self.agent_id,
            name=self.name,
            description=self.description,
            version=self.version,
            state=self._state,
            enabled=self.enabled,
            capabilities=sorted(self.capabilities),
            stats=self._stats,
            current_task=self._current_task.task_id if self._current_task else None,
            uptime=_now_ms() - self.start_time if self.start_time else 0,
            last_activity=self.last_activity_time,
        )

    def get_config(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "capabilities": sorted(self.capabilities),
            "enabled": self.enabled,
        }

    # ------------------------------------------------------------------
    # Event bus
    # ------------------------------------------------------------------

    def set_event_bus(self, event_bus: IEventBus) -> None:
        self._event_bus = event_bus

    async def _emit_event(self, event_type: EventName, data: Any) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(event_type, data)

    def _subscribe_to_event(self, event_type: EventName, callback: Callable[[Any], Any]) -> Unsubscribe:
        if self._event_bus is not None:
            return self._event_bus.subscribe(event_type, callback)
        return lambda: None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: AgentState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self._state]:
            raise AgentStateError(
                f"Agent {self.name}: illegal transition {self._state.value} -> {new_state.value}"
            )
        self._state = new_state

    @staticmethod
    def _generate_agent_id() -> str:
        return f"agent_{_now_ms()}_{uuid.uuid4().hex[:9]}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(agent_id={self.agent_id!r}, name={self.name!r}, "
            f"state={self._state.value}, enabled={self.enabled})"
        )
