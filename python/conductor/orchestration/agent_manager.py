"""
AgentManager - central orchestrator for all agents.

Owns the agent registry, the pending-task list and the dispatch policy:

1. Registry - register/unregister agents, enable/disable, reset after errors
2. Admission - id assignment, duplicate detection, payload schema validation
3. Selection - enabled, capable agents not in error or stopped; idle first, then fastest
4. Execution - the chosen agent is claimed, then run against the dispatch timeout
5. Accounting - aggregate counters and lifecycle events on the shared bus

All registry, pending-list and counter mutations happen synchronously between
suspension points. Selection and the agent's ``admit`` claim run back to back
with no await between them, so two dispatches never pick the same idle agent.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel

from conductor.agents.base_agent import AgentState, AgentStatus, BaseAgent
from conductor.enhanced_logging import track_performance
from conductor.event_bus import InMemoryEventBus, now_ms
from conductor.exceptions import (
    AgentNotFoundError,
    DuplicateAgentError,
    DuplicateTaskError,
    InvalidAgentError,
    InvalidConfigurationError,
    NoCapableAgentError,
    NotInitializedError,
    TaskTimeoutError,
)
from conductor.interfaces.event_bus import EventType, IEventBus
from conductor.interfaces.state_store import IStateStore
from conductor.orchestration.task import (
    Task,
    TaskSchemaRegistry,
    coerce_task,
    generate_task_id,
)

logger = logging.getLogger(__name__)


# ============================================================================
# DATA MODELS
# ============================================================================


@dataclass(frozen=True)
class ManagerConfig:
    """Externally tunable orchestration knobs."""

    max_concurrent_tasks: int = 5
    task_timeout: float = 30.0  # seconds
    event_history_size: int = 100
    cancel_on_timeout: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "ManagerConfig":
        return cls(
            max_concurrent_tasks=settings.max_concurrent_tasks,
            task_timeout=settings.task_timeout,
            event_history_size=settings.event_history_size,
            cancel_on_timeout=settings.cancel_on_timeout,
        )


@dataclass(frozen=True)
class ManagerStats:
    """Aggregate counters; replaced on every update."""

    total_tasks_processed: int = 0
    active_tasks: int = 0
    total_agents: int = 0
    active_agents: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class SystemStatus:
    """Snapshot returned by ``AgentManager.get_system_status``."""

    initialized: bool
    stats: ManagerStats
    agents: List[AgentStatus] = field(default_factory=list)
    task_queue_size: int = 0
    event_bus_stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "stats": self.stats.to_dict(),
            "agents": [agent.to_dict() for agent in self.agents],
            "task_queue_size": self.task_queue_size,
            "event_bus_stats": dict(self.event_bus_stats),
        }


# ============================================================================
# AGENT MANAGER
# ============================================================================


class AgentManager:
    """
    Registry, dispatcher and accountant for a set of agents.

    Dependencies are injected; when no event bus is given a private
    ``InMemoryEventBus`` sized from the config is created, so every manager
    instance can be tested in isolation.
    """

    def __init__(
        self,
        event_bus: Optional[IEventBus] = None,
        config: Optional[ManagerConfig] = None,
        state_store: Optional[IStateStore] = None,
        schemas: Optional[TaskSchemaRegistry] = None,
    ):
        self.config = config or ManagerConfig()
        self._event_bus: IEventBus = event_bus or InMemoryEventBus(
            max_history_size=self.config.event_history_size
        )
        self.state_store = state_store
        self.schemas = schemas if schemas is not None else TaskSchemaRegistry()

        self.agents: Dict[str, BaseAgent] = {}
        self._task_queue: List[Task] = []
        self._stats = ManagerStats()
        self._orphaned: set = set()
        self.is_initialized = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> IEventBus:
        return self._event_bus

    @property
    def stats(self) -> ManagerStats:
        return self._stats

    @property
    def pending_tasks(self) -> Tuple[Task, ...]:
        return tuple(self._task_queue)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Restore persisted counters and announce readiness."""
        if self.is_initialized:
            logger.warning("AgentManager already initialized")
            return

        logger.info("Initializing AgentManager...")
        await self._load_state()

        self.is_initialized = True
        await self._event_bus.emit(EventType.SYSTEM_READY, {
            "timestamp": now_ms(),
            "agent_count": len(self.agents),
        })
        logger.info(f"AgentManager initialized with {len(self.agents)} agent(s)")

    async def shutdown(self) -> None:
        """Stop every registered agent and persist final state."""
        for agent in list(self.agents.values()):
            try:
                await agent.shutdown()
            except Exception:
                logger.exception(f"Agent {agent.agent_id} failed to shut down cleanly")
        for pending in list(self._orphaned):
            pending.cancel()
        await self._save_state()
        self.is_initialized = False
        logger.info("AgentManager shut down")

    # ------------------------------------------------------------------
    # Agent registry
    # ------------------------------------------------------------------

    @track_performance(operation="register_agent")
    async def register_agent(self, agent: BaseAgent) -> None:
        """Bind, initialize and register an agent.

        Raises:
            InvalidAgentError: If ``agent`` is not a BaseAgent
            DuplicateAgentError: If the agent id is already registered
        """
        if not isinstance(agent, BaseAgent):
            raise InvalidAgentError(
                f"Agent must be an instance of BaseAgent, got {type(agent).__name__}"
            )

        if agent.agent_id in self.agents:
            raise DuplicateAgentError(
                f"Agent with ID {agent.agent_id} is already registered",
                details={"agent_id": agent.agent_id},
            )

        agent.set_event_bus(self._event_bus)
        await agent.initialize()

        # initialize() may suspend; re-check before inserting
        if agent.agent_id in self.agents:
            raise DuplicateAgentError(
                f"Agent with ID {agent.agent_id} is already registered",
                details={"agent_id": agent.agent_id},
            )

        self.agents[agent.agent_id] = agent
        self._stats = replace(
            self._stats,
            total_agents=self._stats.total_agents + 1,
            active_agents=self._stats.active_agents + (1 if agent.enabled else 0),
        )

        await self._event_bus.emit(EventType.AGENT_REGISTERED, {
            "agent_id": agent.agent_id,
            "name": agent.name,
            "capabilities": sorted(agent.capabilities),
        })

        logger.info(
            f"Agent registered: {agent.name} ({agent.agent_id}, "
            f"capabilities={sorted(agent.capabilities)})"
        )

        await self._save_state()

    async def unregister_agent(self, agent_id: str) -> None:
        """Shut down and remove an agent.

        The agent is removed even when its shutdown hook raises; that error is
        re-raised once the registry, counters and event are up to date.

        Raises:
            AgentNotFoundError: If the id is unknown
        """
        agent = self._require_agent(agent_id)

        shutdown_error: Optional[Exception] = None
        try:
            await agent.shutdown()
        except Exception as e:
            logger.error(f"Agent {agent_id} failed to shut down cleanly: {e}")
            shutdown_error = e

        # shutdown() may suspend; another caller may already have removed it
        if self.agents.pop(agent_id, None) is None:
            if shutdown_error is not None:
                raise shutdown_error
            return

        self._stats = replace(
            self._stats,
            total_agents=self._stats.total_agents - 1,
            active_agents=self._stats.active_agents - (1 if agent.enabled else 0),
        )

        await self._event_bus.emit(EventType.AGENT_UNREGISTERED, {
            "agent_id": agent_id,
            "name": agent.name,
        })

        logger.info(f"Agent unregistered: {agent.name} ({agent_id})")

        await self._save_state()

        if shutdown_error is not None:
            raise shutdown_error

    def _require_agent(self, agent_id: str) -> BaseAgent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(
                f"Agent {agent_id} not found",
                details={"agent_id": agent_id},
            )
        return agent

    def get_agent(self, agent_id: str) -> Optional[BaseAgent]:
        return self.agents.get(agent_id)

    def get_all_agents(self) -> List[BaseAgent]:
        return list(self.agents.values())

    def get_agents_by_capability(self, capability: str) -> List[BaseAgent]:
        return [agent for agent in self.agents.values() if capability in agent.capabilities]

    async def set_agent_enabled(self, agent_id: str, enabled: bool) -> None:
        """Enable or disable an agent, keeping the active-agent count in step."""
        agent = self._require_agent(agent_id)
        was_enabled = agent.enabled

        if enabled:
            await agent.enable()
        else:
            await agent.disable()

        if was_enabled and not agent.enabled:
            self._stats = replace(self._stats, active_agents=self._stats.active_agents - 1)
        elif not was_enabled and agent.enabled:
            self._stats = replace(self._stats, active_agents=self._stats.active_agents + 1)

        logger.info(f"Agent {agent.name} ({agent_id}) {'enabled' if enabled else 'disabled'}")

        await self._save_state()

    async def reset_agent(self, agent_id: str) -> None:
        """Return an agent in error state to idle so it can be selected again."""
        agent = self._require_agent(agent_id)
        await agent.reset()
        await self._save_state()

    # ------------------------------------------------------------------
    # Payload schemas
    # ------------------------------------------------------------------

    def register_schema(self, task_type: str, model: Type[BaseModel]) -> None:
        self.schemas.register(task_type, model)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch_task(self, task: Union[Task, Mapping[str, Any]]) -> Any:
        """Route a task to the best capable agent and return its result.

        Args:
            task: ``Task`` or mapping ``{id?, type, data, ...}``

        Returns:
            Whatever the selected agent's ``execute`` returned

        Raises:
            NotInitializedError: If ``initialize`` has not run
            TaskValidationError: If the task or its payload is malformed
            DuplicateTaskError: If a task with the same id is pending
            NoCapableAgentError: If no agent qualifies
            TaskTimeoutError: If the agent did not settle in time
            Exception: Any error raised by the agent, unchanged
        """
        if not self.is_initialized:
            raise NotInitializedError("AgentManager not initialized")

        task = coerce_task(task)

        if task.task_id is None:
            task.task_id = generate_task_id()
        elif any(pending.task_id == task.task_id for pending in self._task_queue):
            raise DuplicateTaskError(
                f"Task {task.task_id} is already pending",
                details={"task_id": task.task_id},
            )

        self._task_queue.append(task)
        self._stats = replace(self._stats, active_tasks=self._stats.active_tasks + 1)
        if self._stats.active_tasks > self.config.max_concurrent_tasks:
            logger.warning(
                f"{self._stats.active_tasks} tasks in flight exceeds advisory limit "
                f"of {self.config.max_concurrent_tasks}"
            )

        try:
            await self._event_bus.emit(EventType.TASK_CREATED, {
                "task_id": task.task_id,
                "task_type": task.task_type,
                "timestamp": now_ms(),
            })

            self.schemas.validate(task)

            agent = self._find_agent_for_task(task)
            if agent is None:
                raise NoCapableAgentError(
                    f"No capable agent found for task type: {task.task_type}",
                    details={"task_id": task.task_id, "task_type": task.task_type},
                )

            # claim before the next await so a concurrent dispatch sees it busy
            started = agent.admit(task)

            try:
                await self._event_bus.emit(EventType.TASK_ASSIGNED, {
                    "task_id": task.task_id,
                    "agent_id": agent.agent_id,
                    "agent_name": agent.name,
                })
            except BaseException:
                agent.release_admission(task)
                raise

            logger.debug(f"Assigned task {task.task_id} to agent {agent.agent_id}")

            result = await self._execute_with_timeout(agent, task, started)
        except BaseException as e:
            self._remove_from_queue(task.task_id)
            self._stats = replace(self._stats, active_tasks=self._stats.active_tasks - 1)
            if isinstance(e, Exception):
                logger.error(f"Task {task.task_id} failed: {e}")
                await self._event_bus.emit(EventType.SYSTEM_ERROR, {
                    "task_id": task.task_id,
                    "error": getattr(e, "message", None) or str(e),
                })
            raise

        self._remove_from_queue(task.task_id)
        self._stats = replace(
            self._stats,
            total_tasks_processed=self._stats.total_tasks_processed + 1,
            active_tasks=self._stats.active_tasks - 1,
        )
        return result

    def _find_agent_for_task(self, task: Task) -> Optional[BaseAgent]:
        """Idle agents first, then the lowest average execution time."""
        capable = [
            agent for agent in self.agents.values()
            if agent.enabled
            and agent.state not in (AgentState.ERROR, AgentState.STOPPED)
            and agent.can_handle(task)
        ]

        if not capable:
            logger.warning(f"No capable agent for task type {task.task_type}")
            return None

        # sorted() is stable, so registry order breaks remaining ties
        capable = sorted(
            capable,
            key=lambda agent: (
                agent.state is not AgentState.IDLE,
                agent.stats.average_execution_time,
            ),
        )
        return capable[0]

    async def _execute_with_timeout(self, agent: BaseAgent, task: Task, started: float) -> Any:
        """Race an admitted execution against the dispatch timeout.

        On timeout the manager stops waiting; the execution keeps running
        unless ``cancel_on_timeout`` is set.
        """
        execution = asyncio.ensure_future(agent.run_admitted(task, started))
        try:
            done, _ = await asyncio.wait({execution}, timeout=self.config.task_timeout)
        except asyncio.CancelledError:
            # the caller gave up; do not leave the agent's execution unobserved
            self._track_orphan(execution, agent, task)
            raise

        if execution in done:
            return execution.result()

        if self.config.cancel_on_timeout:
            execution.cancel()
            logger.warning(f"Cancelled task {task.task_id} on agent {agent.agent_id} after timeout")
        self._track_orphan(execution, agent, task)

        raise TaskTimeoutError(
            f"Task timeout: {task.task_id} did not finish within {self.config.task_timeout}s",
            details={
                "task_id": task.task_id,
                "agent_id": agent.agent_id,
                "timeout": self.config.task_timeout,
            },
        )

    def _track_orphan(self, execution: "asyncio.Future[Any]", agent: BaseAgent, task: Task) -> None:
        self._orphaned.add(execution)

        def _settled(fut: "asyncio.Future[Any]") -> None:
            self._orphaned.discard(fut)
            if fut.cancelled():
                logger.info(f"Abandoned task {task.task_id} on agent {agent.agent_id} was cancelled")
            elif fut.exception() is not None:
                logger.info(
                    f"Abandoned task {task.task_id} on agent {agent.agent_id} "
                    f"failed late: {fut.exception()}"
                )
            else:
                logger.info(f"Abandoned task {task.task_id} on agent {agent.agent_id} finished late")

        execution.add_done_callback(_settled)

    def _remove_from_queue(self, task_id: Optional[str]) -> None:
        for index, pending in enumerate(self._task_queue):
            if pending.task_id == task_id:
                del self._task_queue[index]
                return

    # ------------------------------------------------------------------
    # Status & configuration
    # ------------------------------------------------------------------

    def get_system_status(self) -> SystemStatus:
        return SystemStatus(
            initialized=self.is_initialized,
            stats=self._stats,
            agents=[agent.get_status() for agent in self.agents.values()],
            task_queue_size=len(self._task_queue),
            event_bus_stats=self._event_bus.get_stats(),
        )

    def update_config(self, **changes: Any) -> ManagerConfig:
        """Merge ``changes`` into the config.

        Raises:
            InvalidConfigurationError: On unknown keys or non-positive limits
        """
        known = {f.name for f in fields(ManagerConfig)}
        unknown = set(changes) - known
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown configuration keys: {sorted(unknown)}",
                details={"allowed": sorted(known)},
            )
        for key in ("max_concurrent_tasks", "task_timeout", "event_history_size"):
            if key in changes and changes[key] <= 0:
                raise InvalidConfigurationError(f"{key} must be positive, got {changes[key]}")

        self.config = replace(self.config, **changes)
        if "event_history_size" in changes:
            self._event_bus.set_max_history_size(self.config.event_history_size)
        logger.info(f"AgentManager config updated: {changes}")
        return self.config

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _snapshot_state(self) -> Dict[str, Any]:
        return {
            "agents": [
                {"config": agent.get_config(), "stats": agent.stats.to_dict()}
                for agent in self.agents.values()
            ],
            "stats": self._stats.to_dict(),
            "timestamp": now_ms(),
        }

    async def _save_state(self) -> None:
        if self.state_store is None:
            return
        try:
            await self.state_store.save_state(self._snapshot_state())
        except Exception:
            logger.exception("Failed to save AgentManager state")

    async def _load_state(self) -> None:
        if self.state_store is None:
            return
        try:
            state = await self.state_store.load_state()
        except Exception:
            logger.exception("Failed to load AgentManager state")
            return

        if not state or not isinstance(state.get("stats"), dict):
            return

        # registry counts are rebuilt by registration; only history survives
        processed = state["stats"].get("total_tasks_processed", 0)
        if isinstance(processed, int) and processed >= 0:
            self._stats = replace(self._stats, total_tasks_processed=processed)
            logger.info(f"AgentManager state loaded ({processed} tasks processed previously)")
