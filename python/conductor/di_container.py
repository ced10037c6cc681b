"""Dependency injection container for Conductor.

Lightweight wiring of core services at application startup.
Services are created lazily on first access.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConductorContainer:
    """Central service container for the Conductor application."""

    def __init__(self, settings=None) -> None:
        self._settings = settings
        self._event_bus = None
        self._state_store = None
        self._agent_manager = None
        self._monitor = None
        self._started = False

    @property
    def settings(self):
        if self._settings is None:
            from conductor.config.settings import get_settings
            self._settings = get_settings()
        return self._settings

    @property
    def event_bus(self):
        if self._event_bus is None:
            from conductor.event_bus import InMemoryEventBus
            self._event_bus = InMemoryEventBus(max_history_size=self.settings.event_history_size)
        return self._event_bus

    @property
    def state_store(self):
        if self._state_store is None and self.settings.state_path:
            from conductor.persistence.state_store import JsonFileStateStore
            self._state_store = JsonFileStateStore(self.settings.state_path)
            logger.info(f"JsonFileStateStore initialized at {self.settings.state_path}")
        return self._state_store

    @property
    def agent_manager(self):
        if self._agent_manager is None:
            from conductor.orchestration.agent_manager import AgentManager, ManagerConfig
            self._agent_manager = AgentManager(
                event_bus=self.event_bus,
                config=ManagerConfig.from_settings(self.settings),
                state_store=self.state_store,
            )
        return self._agent_manager

    @property
    def monitor(self):
        if self._monitor is None:
            from conductor.monitoring.agent_monitor import AgentMonitor
            self._monitor = AgentMonitor(
                self.agent_manager,
                refresh_interval=self.settings.monitor_refresh_interval,
                event_limit=self.settings.monitor_event_limit,
            )
        return self._monitor

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Initialize the manager, register built-in agents and start the monitor."""
        if self._started:
            return
        manager = self.agent_manager
        await manager.initialize()

        if self.settings.register_builtin_agents and manager.get_agent("echo") is None:
            from conductor.agents.builtin import EchoAgent
            await manager.register_agent(EchoAgent())

        self.monitor.start()
        self._started = True
        logger.info(f"Conductor container started with {len(manager.agents)} agent(s)")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.monitor.stop()
        await self.agent_manager.shutdown()
        self._started = False
        logger.info("Conductor container stopped")

    def status(self) -> Dict[str, Any]:
        """Report which services are initialized."""
        return {
            "settings": self._settings is not None,
            "event_bus": self._event_bus is not None,
            "state_store": self._state_store is not None,
            "agent_manager": self._agent_manager is not None,
            "monitor": self._monitor is not None,
        }


# Global container
_container: Optional[ConductorContainer] = None


def get_container() -> ConductorContainer:
    global _container
    if _container is None:
        _container = ConductorContainer()
    return _container


def shutdown_container() -> None:
    global _container
    _container = None
