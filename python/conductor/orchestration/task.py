"""Task model and per-type payload schemas.

A task is a tagged union keyed by ``task_type``. When a pydantic model is
registered for a type, the payload is validated at the manager boundary and
the agent receives the validated model instead of the raw mapping.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from conductor.exceptions import TaskValidationError

logger = logging.getLogger(__name__)

_TASK_KEYS = ("id", "type", "data")


def generate_task_id() -> str:
    """Time-based plus random id; collisions are treated as negligible."""
    return f"task_{time.time_ns() // 1_000_000}_{uuid.uuid4().hex[:9]}"


@dataclass
class Task:
    """A unit of work routed by the agent manager."""

    task_type: str
    data: Any = None
    task_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: int = field(default_factory=lambda: time.time_ns() // 1_000_000)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Task":
        """Build a task from ``{id?, type, data, ...}``; other keys become metadata."""
        if "type" not in raw:
            raise TaskValidationError("Task is missing required field 'type'")
        return cls(
            task_type=raw["type"],
            data=raw.get("data"),
            task_id=raw.get("id"),
            metadata={k: v for k, v in raw.items() if k not in _TASK_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.data.model_dump() if isinstance(self.data, BaseModel) else self.data
        return {
            **self.metadata,
            "id": self.task_id,
            "type": self.task_type,
            "data": data,
        }


def coerce_task(task: Union[Task, Mapping[str, Any]]) -> Task:
    """Accept a ``Task`` or a mapping and check the routing fields."""
    if isinstance(task, Task):
        result = task
    elif isinstance(task, Mapping):
        result = Task.from_dict(task)
    else:
        raise TaskValidationError(
            f"Task must be a Task or a mapping, got {type(task).__name__}"
        )

    if not isinstance(result.task_type, str) or not result.task_type:
        raise TaskValidationError("Task type must be a non-empty string")

    if result.task_id is not None and (not isinstance(result.task_id, str) or not result.task_id.strip()):
        raise TaskValidationError(f"Invalid task id: {result.task_id!r}")

    return result


class TaskSchemaRegistry:
    """Maps task types to the pydantic model their payload must satisfy."""

    def __init__(self, schemas: Optional[Mapping[str, Type[BaseModel]]] = None) -> None:
        self._schemas: Dict[str, Type[BaseModel]] = {}
        for task_type, model in (schemas or {}).items():
            self.register(task_type, model)

    def register(self, task_type: str, model: Type[BaseModel]) -> None:
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            raise TaskValidationError(
                f"Schema for {task_type} must be a pydantic model class"
            )
        self._schemas[task_type] = model
        logger.debug(f"Registered payload schema {model.__name__} for task type {task_type}")

    def unregister(self, task_type: str) -> None:
        self._schemas.pop(task_type, None)

    def get(self, task_type: str) -> Optional[Type[BaseModel]]:
        return self._schemas.get(task_type)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def validate(self, task: Task) -> Task:
        """Validate the payload in place; unknown types pass through untouched."""
        model = self._schemas.get(task.task_type)
        if model is None or isinstance(task.data, model):
            return task

        try:
            task.data = model.model_validate(task.data)
        except PydanticValidationError as e:
            raise TaskValidationError(
                f"Invalid payload for task type {task.task_type}: {e.error_count()} error(s)",
                details={"task_id": task.task_id, "errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e
        return task
