"""Optional persistence for manager state."""

from conductor.persistence.state_store import InMemoryStateStore, JsonFileStateStore

__all__ = ["InMemoryStateStore", "JsonFileStateStore"]
