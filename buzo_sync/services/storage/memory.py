"""In-memory key-value store, for tests and ephemeral sessions."""

import json
from typing import Any, Optional

from buzo_sync.services.storage.interface import LocalStoreInterface, StorageError


class InMemoryStore(LocalStoreInterface):
    """
    Dict-backed store.

    Values are round-tripped through JSON on save so callers never share
    mutable state with the store, and non-serializable values fail here
    the same way they would on disk.
    """

    def __init__(self):
        self._data: dict[str, str] = {}

    async def save(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to save {key}: {e}")

    async def load(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return sorted(self._data)
