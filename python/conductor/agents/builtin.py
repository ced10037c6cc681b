"""Built-in agents.

``FunctionAgent`` adapts any callable to the agent contract; ``EchoAgent``
is the smallest useful agent and is registered by the container at startup.
"""

import inspect
from typing import Any, Callable, Iterable, Optional

from conductor.agents.base_agent import BaseAgent
from conductor.orchestration.task import Task


class FunctionAgent(BaseAgent):
    """Agent whose task logic is a plain sync or async callable ``fn(task)``."""

    def __init__(
        self,
        fn: Callable[[Task], Any],
        capabilities: Iterable[str],
        agent_id: Optional[str] = None,
        name: Optional[str] = None,
        description: str = "",
        version: str = "1.0.0",
        enabled: bool = True,
    ):
        super().__init__(
            agent_id=agent_id,
            name=name or getattr(fn, "__name__", "function-agent"),
            description=description or (inspect.getdoc(fn) or ""),
            capabilities=capabilities,
            version=version,
            enabled=enabled,
        )
        self._fn = fn

    async def _execute_task(self, task: Task) -> Any:
        result = self._fn(task)
        if inspect.isawaitable(result):
            result = await result
        return result


class EchoAgent(BaseAgent):
    """Returns the task payload unchanged under the ``echo`` key."""

    def __init__(self, agent_id: str = "echo", **kwargs: Any):
        kwargs.setdefault("name", "Echo Agent")
        kwargs.setdefault("description", "Returns the task payload unchanged")
        kwargs.setdefault("capabilities", ("echo",))
        super().__init__(agent_id=agent_id, **kwargs)

    async def _execute_task(self, task: Task) -> Any:
        return {"echo": task.data}
