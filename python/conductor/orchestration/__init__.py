"""Task model and the agent manager.

``AgentManager`` lives in ``conductor.orchestration.agent_manager``; it is not
re-exported here because the agent base class imports this package.
"""

from conductor.orchestration.task import Task, TaskSchemaRegistry, coerce_task, generate_task_id

__all__ = ["Task", "TaskSchemaRegistry", "coerce_task", "generate_task_id"]
