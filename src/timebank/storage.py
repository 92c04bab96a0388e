"""Key-value persistence collaborators for the ledger state blob."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .exceptions import PersistenceError

StateBlob = Dict[str, Any]


class StateStorage(Protocol):
    """Anything that can load and save the serialized state graph."""

    def load(self) -> Optional[StateBlob]:
        ...

    def save(self, blob: StateBlob) -> None:
        ...


class MemoryStorage:
    """Keep the blob as a JSON string in memory.

    Encoding on save means a blob that would not survive a real storage medium
    fails here too.
    """

    def __init__(self, initial: Optional[StateBlob] = None) -> None:
        self._payload: Optional[str] = None
        self.saves = 0
        if initial is not None:
            self._payload = json.dumps(initial)

    def load(self) -> Optional[StateBlob]:
        if self._payload is None:
            return None
        return json.loads(self._payload)

    def save(self, blob: StateBlob) -> None:
        try:
            self._payload = json.dumps(blob)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"State could not be serialised: {exc}") from exc
        self.saves += 1


class JsonFileStorage:
    """Store the blob in a single JSON file, replaced atomically on save."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> Optional[StateBlob]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not read state from {self.path}: {exc}") from exc

    def save(self, blob: StateBlob) -> None:
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as handle:
                json.dump(blob, handle, sort_keys=True)
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write state to {self.path}: {exc}") from exc


__all__ = ["JsonFileStorage", "MemoryStorage", "StateBlob", "StateStorage"]
