"""State stores satisfying the IStateStore protocol."""

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class InMemoryStateStore:
    """Keeps the last saved document in memory (tests, ephemeral runs)."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._state: Optional[Dict[str, Any]] = copy.deepcopy(initial) if initial else None
        self.save_count = 0

    async def save_state(self, state: Dict[str, Any]) -> None:
        self._state = copy.deepcopy(state)
        self.save_count += 1

    async def load_state(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._state) if self._state is not None else None


class JsonFileStateStore:
    """One JSON document on disk, replaced atomically on every save."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    async def save_state(self, state: Dict[str, Any]) -> None:
        payload = json.dumps(state, default=str, indent=2)
        await asyncio.to_thread(self._write, payload)

    async def load_state(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        raw = await asyncio.to_thread(self.path.read_text, "utf-8")
        try:
            state = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt state file %s", self.path)
            return None
        return state if isinstance(state, dict) else None

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
