"""
Conductor: FastAPI application entry point.

Provides a REST API over the agent manager:
- /health: service health status
- /api/status: system status snapshot
- /api/agents: registered agents, enable/disable, reset
- /api/tasks: dispatch a task and wait for its result
- /api/events: event history and a live SSE stream
- /api/monitor: latest monitor snapshot
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from conductor.config.settings import get_settings
from conductor.di_container import get_container, shutdown_container
from conductor.enhanced_logging import configure_logging
from conductor.exceptions import AgentNotFoundError, ConductorException
from conductor.orchestration.task import Task

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TaskRequest(BaseModel):
    id: Optional[str] = None
    type: str = Field(min_length=1)
    data: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EnabledRequest(BaseModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format, settings.log_file)
    logger.info(f"{settings.app_name} {settings.app_version} starting up")

    container = get_container()
    await container.start()
    yield
    await container.stop()
    shutdown_container()
    logger.info(f"{settings.app_name} shutting down")


_settings = get_settings()

app = FastAPI(
    title=_settings.app_name,
    version=_settings.app_version,
    description="Conductor agent orchestration API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if _settings.environment == "development" else _settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_json(value: Any) -> Any:
    """Make event payloads and agent results safe for JSON responses."""
    return jsonable_encoder(value, custom_encoder={Task: Task.to_dict})


def _http_error(exc: ConductorException) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=_to_json(exc.to_api_response()))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    """Health check; reports whether the manager is initialized."""
    container = get_container()
    manager = container.agent_manager
    return {
        "status": "healthy" if manager.is_initialized else "starting",
        "version": container.settings.app_version,
        "agents": len(manager.agents),
        "services": container.status(),
    }


@app.get("/api/status")
async def system_status():
    return _to_json(get_container().agent_manager.get_system_status().to_dict())


@app.get("/api/agents")
async def list_agents():
    manager = get_container().agent_manager
    return {"agents": [agent.get_status().to_dict() for agent in manager.get_all_agents()]}


@app.get("/api/agents/{agent_id}")
async def get_agent(agent_id: str):
    agent = get_container().agent_manager.get_agent(agent_id)
    if agent is None:
        raise _http_error(AgentNotFoundError(f"Agent {agent_id} not found"))
    return agent.get_status().to_dict()


@app.post("/api/agents/{agent_id}/enabled")
async def set_agent_enabled(agent_id: str, req: EnabledRequest):
    manager = get_container().agent_manager
    try:
        await manager.set_agent_enabled(agent_id, req.enabled)
    except ConductorException as e:
        raise _http_error(e)
    return manager.get_agent(agent_id).get_status().to_dict()


@app.post("/api/agents/{agent_id}/reset")
async def reset_agent(agent_id: str):
    manager = get_container().agent_manager
    try:
        await manager.reset_agent(agent_id)
    except ConductorException as e:
        raise _http_error(e)
    return manager.get_agent(agent_id).get_status().to_dict()


@app.post("/api/tasks")
async def dispatch_task(req: TaskRequest):
    """Dispatch a task and wait for the selected agent's result."""
    manager = get_container().agent_manager
    task = Task(task_type=req.type, data=req.data, task_id=req.id, metadata=dict(req.metadata))
    try:
        result = await manager.dispatch_task(task)
    except ConductorException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Agent failed task {task.task_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"task_id": task.task_id, "result": _to_json(result)}


@app.get("/api/events")
async def event_history(event_type: Optional[str] = None, since: Optional[int] = None, limit: int = 50):
    """Retained events, oldest first."""
    limit = min(max(1, limit), 1000)
    bus = get_container().event_bus
    events = bus.get_history(event_type=event_type, since=since, limit=limit)
    return {"events": [_to_json(event.to_dict()) for event in events]}


@app.get("/api/events/stream")
async def stream_events(event_type: str):
    """Stream events of one type as Server-Sent Events."""
    container = get_container()
    queue: asyncio.Queue = asyncio.Queue()

    async def on_event(event):
        await queue.put(event)

    unsubscribe = container.event_bus.subscribe(event_type, on_event)

    async def event_generator():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield {"event": event.type, "data": json.dumps(_to_json(event.to_dict()))}
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}
        finally:
            unsubscribe()

    return EventSourceResponse(event_generator())


@app.get("/api/monitor")
async def monitor_snapshot():
    monitor = get_container().monitor
    snapshot = monitor.latest or monitor.refresh()
    return snapshot.to_dict()
