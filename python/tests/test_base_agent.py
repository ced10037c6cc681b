"""Tests for BaseAgent lifecycle, admission and statistics (conductor/agents)."""

import asyncio
import itertools

import pytest
from unittest.mock import AsyncMock

from conductor.agents import AgentState, AgentStats, BaseAgent, EchoAgent, FunctionAgent
from conductor.agents.base_agent import _ALLOWED_TRANSITIONS
from conductor.event_bus import InMemoryEventBus
from conductor.exceptions import AgentBusyError, AgentDisabledError, AgentStateError
from conductor.interfaces import EventType, IAgent
from conductor.orchestration.task import Task


class GateAgent(BaseAgent):
    """Blocks in _execute_task until the test releases it."""

    def __init__(self, **kwargs):
        kwargs.setdefault("capabilities", ("work",))
        super().__init__(**kwargs)
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def _execute_task(self, task):
        self.started.set()
        await self.release.wait()
        return f"done:{task.task_id}"


class FailingAgent(BaseAgent):
    async def _execute_task(self, task):
        raise RuntimeError("task blew up")


class BrokenInitAgent(BaseAgent):
    async def on_initialize(self):
        raise RuntimeError("cannot connect")


@pytest.fixture
def bus():
    return InMemoryEventBus()


async def _ready(agent, bus=None):
    if bus is not None:
        agent.set_event_bus(bus)
    await agent.initialize()
    return agent


def _task(task_type="work", task_id="t1", data=None):
    return Task(task_type=task_type, data=data, task_id=task_id)


# --- Construction & lifecycle ---

def test_new_agent_is_initializing():
    agent = BaseAgent(name="Fresh")
    assert agent.state is AgentState.INITIALIZING
    assert agent.agent_id.startswith("agent_")
    assert agent.stats == AgentStats()
    assert agent.is_available is False


def test_base_agent_satisfies_protocol():
    assert isinstance(EchoAgent(), IAgent)


async def test_initialize_moves_to_idle():
    agent = await _ready(EchoAgent())
    assert agent.state is AgentState.IDLE
    assert agent.start_time is not None
    assert agent.is_available is True


async def test_initialize_twice_is_noop():
    agent = await _ready(EchoAgent())
    await agent.initialize()
    assert agent.state is AgentState.IDLE


async def test_initialize_failure_goes_to_error(bus):
    events = []
    bus.subscribe(EventType.AGENT_ERROR, events.append)
    agent = BrokenInitAgent(name="Broken")
    agent.set_event_bus(bus)

    with pytest.raises(RuntimeError, match="cannot connect"):
        await agent.initialize()

    assert agent.state is AgentState.ERROR
    assert agent.stats.last_error.message == "cannot connect"
    assert agent.stats.tasks_failed == 0
    assert events[0].data["error"] == "cannot connect"


async def test_shutdown_is_terminal():
    agent = await _ready(EchoAgent())
    await agent.shutdown()
    assert agent.state is AgentState.STOPPED

    await agent.shutdown()
    with pytest.raises(AgentStateError):
        await agent.initialize()
    with pytest.raises(AgentStateError):
        await agent.execute(_task("echo"))


async def test_reset_from_error_emits_event(bus):
    events = []
    bus.subscribe(EventType.AGENT_RESET, events.append)
    agent = await _ready(FailingAgent(capabilities=("work",)), bus)

    with pytest.raises(RuntimeError):
        await agent.execute(_task())
    assert agent.state is AgentState.ERROR

    await agent.reset()

    assert agent.state is AgentState.IDLE
    assert agent.stats.tasks_failed == 1
    assert len(events) == 1


async def test_reset_idle_is_noop_and_other_states_reject():
    agent = await _ready(EchoAgent())
    await agent.reset()
    assert agent.state is AgentState.IDLE

    with pytest.raises(AgentStateError):
        await BaseAgent().reset()


async def test_reset_stats():
    agent = await _ready(EchoAgent())
    await agent.execute(_task("echo"))
    agent.reset_stats()
    assert agent.stats == AgentStats()


# --- State machine ---

_STATE_PAIRS = list(itertools.product(AgentState, repeat=2))


@pytest.mark.parametrize(
    "source,target",
    _STATE_PAIRS,
    ids=[f"{s.value}->{t.value}" for s, t in _STATE_PAIRS],
)
def test_state_transitions_are_closed(source, target):
    agent = EchoAgent()
    agent._state = source

    if target in _ALLOWED_TRANSITIONS[source]:
        agent._transition(target)
        assert agent.state is target
    else:
        with pytest.raises(AgentStateError):
            agent._transition(target)
        assert agent.state is source


def test_every_state_has_a_transition_entry():
    assert set(_ALLOWED_TRANSITIONS) == set(AgentState)
    assert _ALLOWED_TRANSITIONS[AgentState.STOPPED] == frozenset()
    assert AgentState.BUSY not in _ALLOWED_TRANSITIONS[AgentState.ERROR]


async def test_release_admission_returns_agent_to_idle():
    agent = await _ready(EchoAgent())
    task = _task("echo")

    agent.admit(task)
    assert agent.state is AgentState.BUSY
    assert agent.current_task is task
    with pytest.raises(AgentBusyError):
        agent.admit(_task("echo", task_id="t2"))

    agent.release_admission(task)
    assert agent.state is AgentState.IDLE
    assert agent.current_task is None
    assert agent.stats.total_tasks == 0


# --- Capability ---

def test_can_handle():
    agent = EchoAgent()
    assert agent.can_handle(_task("echo")) is True
    assert agent.can_handle(_task("other")) is False
    assert agent.can_handle(None) is False


# --- Execution ---

async def test_execute_success_updates_stats_and_emits(bus):
    started, completed = [], []
    bus.subscribe(EventType.TASK_STARTED, started.append)
    bus.subscribe(EventType.TASK_COMPLETED, completed.append)
    agent = await _ready(EchoAgent(), bus)

    result = await agent.execute(_task("echo", data="x"))

    assert result == {"echo": "x"}
    assert agent.state is AgentState.IDLE
    assert agent.current_task is None
    assert agent.stats.tasks_completed == 1
    assert agent.stats.tasks_failed == 0
    assert agent.stats.average_execution_time >= 0
    assert agent.last_activity_time is not None
    assert started[0].data["task_id"] == "t1"
    assert completed[0].data["result"] == {"echo": "x"}
    assert "execution_time" in completed[0].data


async def test_execute_failure_goes_to_error(bus):
    failed = []
    bus.subscribe(EventType.TASK_FAILED, failed.append)
    agent = await _ready(FailingAgent(capabilities=("work",)), bus)

    with pytest.raises(RuntimeError, match="task blew up"):
        await agent.execute(_task())

    assert agent.state is AgentState.ERROR
    assert agent.stats.tasks_failed == 1
    assert agent.stats.last_error.message == "task blew up"
    assert agent.current_task is None
    assert failed[0].data["error"] == "task blew up"


async def test_error_agent_rejects_until_reset():
    agent = await _ready(FailingAgent(capabilities=("work",)))
    with pytest.raises(RuntimeError):
        await agent.execute(_task())

    with pytest.raises(AgentStateError):
        await agent.execute(_task(task_id="t2"))
    assert agent.stats.tasks_failed == 1


async def test_disabled_agent_rejects():
    agent = await _ready(EchoAgent(enabled=False))
    with pytest.raises(AgentDisabledError):
        await agent.execute(_task("echo"))
    assert agent.state is AgentState.IDLE
    assert agent.stats.total_tasks == 0


async def test_busy_agent_rejects_second_task():
    agent = await _ready(GateAgent())

    first = asyncio.ensure_future(agent.execute(_task(task_id="t1")))
    await agent.started.wait()
    assert agent.state is AgentState.BUSY
    assert agent.current_task.task_id == "t1"

    with pytest.raises(AgentBusyError):
        await agent.execute(_task(task_id="t2"))

    agent.release.set()
    assert await first == "done:t1"
    assert agent.state is AgentState.IDLE
    assert agent.stats.tasks_completed == 1
    assert agent.stats.tasks_failed == 0


async def test_cancelled_execution_counts_as_failure(bus):
    failed = []
    bus.subscribe(EventType.TASK_FAILED, failed.append)
    agent = await _ready(GateAgent(), bus)

    running = asyncio.ensure_future(agent.execute(_task()))
    await agent.started.wait()
    running.cancel()

    with pytest.raises(asyncio.CancelledError):
        await running

    assert agent.state is AgentState.ERROR
    assert agent.stats.tasks_failed == 1
    assert failed[0].data["error"] == "cancelled"


async def test_shutdown_while_busy_keeps_stopped():
    agent = await _ready(GateAgent())
    running = asyncio.ensure_future(agent.execute(_task()))
    await agent.started.wait()

    await agent.shutdown()
    agent.release.set()
    await running

    assert agent.state is AgentState.STOPPED
    assert agent.stats.tasks_completed == 1


async def test_base_execute_task_not_implemented():
    agent = await _ready(BaseAgent(capabilities=("work",)))
    with pytest.raises(NotImplementedError):
        await agent.execute(_task())
    assert agent.state is AgentState.ERROR


async def test_average_execution_time_over_tasks():
    agent = await _ready(EchoAgent())
    await agent.execute(_task("echo", task_id="a"))
    await agent.execute(_task("echo", task_id="b"))

    stats = agent.stats
    assert stats.tasks_completed == 2
    assert stats.average_execution_time == pytest.approx(stats.total_execution_time / 2)


def test_stats_record_is_pure():
    stats = AgentStats()
    updated = stats.record(False, 10.0, ValueError("bad"))

    assert stats.tasks_failed == 0
    assert updated.tasks_failed == 1
    assert updated.average_execution_time == 10.0
    assert updated.last_error.message == "bad"
    assert updated.to_dict()["last_error"]["message"] == "bad"


# --- Enable / disable ---

async def test_enable_disable_emit_events(bus):
    handler = AsyncMock()
    bus.subscribe(EventType.AGENT_STOPPED, handler)
    bus.subscribe(EventType.AGENT_STARTED, handler)
    agent = await _ready(EchoAgent(), bus)

    await agent.disable()
    assert agent.enabled is False
    await agent.enable()
    assert agent.enabled is True
    assert handler.await_count == 2


async def test_events_skipped_without_bus():
    agent = await _ready(EchoAgent())
    assert agent.event_bus is None
    assert await agent.execute(_task("echo", data=1)) == {"echo": 1}


# --- Status ---

async def test_get_status_and_config():
    agent = await _ready(EchoAgent(description="echoes"))
    status = agent.get_status()

    assert status.agent_id == "echo"
    assert status.state is AgentState.IDLE
    assert status.capabilities == ["echo"]
    assert status.current_task is None
    assert status.uptime >= 0

    data = status.to_dict()
    assert data["state"] == "idle"
    assert data["stats"]["tasks_completed"] == 0

    config = agent.get_config()
    assert config["capabilities"] == ["echo"]
    assert config["description"] == "echoes"


def test_repr():
    assert "EchoAgent(agent_id='echo'" in repr(EchoAgent())


# --- Built-in agents ---

async def test_function_agent_sync_and_async():
    def double(task):
        """Doubles numbers."""
        return task.data * 2

    async def triple(task):
        return task.data * 3

    sync_agent = await _ready(FunctionAgent(double, capabilities=("math",)))
    async_agent = await _ready(FunctionAgent(triple, capabilities=("math",), name="tripler"))

    assert sync_agent.name == "double"
    assert sync_agent.description == "Doubles numbers."
    assert await sync_agent.execute(_task("math", data=2)) == 4
    assert await async_agent.execute(_task("math", data=2)) == 6


# --- Extension hooks ---

class ListeningAgent(BaseAgent):
    async def on_initialize(self):
        self.seen = []
        self.unsubscribe = self._subscribe_to_event(EventType.SYSTEM_READY, self.seen.append)


async def test_subscribe_to_event_hook(bus):
    agent = await _ready(ListeningAgent(), bus)

    await bus.emit(EventType.SYSTEM_READY, {"agent_count": 1})
    agent.unsubscribe()
    await bus.emit(EventType.SYSTEM_READY, {"agent_count": 2})

    assert [event.data["agent_count"] for event in agent.seen] == [1]


async def test_subscribe_without_bus_returns_noop():
    agent = await _ready(ListeningAgent())
    agent.unsubscribe()
    assert agent.seen == []


async def test_learn_is_a_noop():
    agent = await _ready(EchoAgent())
    assert await agent.learn({"score": 1}) is None
    assert agent.stats == AgentStats()
