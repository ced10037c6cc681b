"""Interface every agent must satisfy to be managed by the orchestrator."""

from typing import Any, FrozenSet, Protocol, runtime_checkable

from conductor.interfaces.event_bus import IEventBus


@runtime_checkable
class IAgent(Protocol):
    """Worker contract.

    The orchestrator binds the shared event bus with ``set_event_bus`` before
    calling ``initialize``.
    """

    agent_id: str
    capabilities: FrozenSet[str]

    def set_event_bus(self, event_bus: IEventBus) -> None:
        ...

    async def initialize(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

    def can_handle(self, task: Any) -> bool:
        ...

    async def execute(self, task: Any) -> Any:
        """Run one task; raises when rejected by admission control or on failure."""
        ...
