"""Interface for persisting orchestrator state.

The core works without any store; a store only lets counters survive restarts.
"""

from typing import Any, Dict, Optional, Protocol


class IStateStore(Protocol):
    """Interface for saving and loading the manager state document."""

    async def save_state(self, state: Dict[str, Any]) -> None:
        """Persist the state document.

        Args:
            state: JSON-serializable mapping
        """
        ...

    async def load_state(self) -> Optional[Dict[str, Any]]:
        """Load the last saved state document.

        Returns:
            Saved mapping or None if nothing was saved
        """
        ...
