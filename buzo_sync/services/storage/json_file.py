"""
JSON File Storage Implementation

DESIGN DECISION: Each key is one JSON document in the data directory:
1. Survives app restarts with no database setup
2. Users (and support) can inspect the files directly
3. A write replaces the whole document atomically (temp file + rename),
   so a crash never leaves half a queue on disk

TRADEOFFS:
- Every save rewrites the full collection (fine for personal data volumes)
- No cross-key transactions
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Optional

from buzo_sync.config import get_settings
from buzo_sync.services.storage.interface import (
    CorruptDataError,
    LocalStoreInterface,
    StorageError,
)


_VALID_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonFileStore(LocalStoreInterface):
    """Key-value store backed by one JSON file per key."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        key_prefix: Optional[str] = None,
    ):
        settings = get_settings().storage
        self._data_dir = Path(data_dir) if data_dir is not None else settings.data_dir
        self._prefix = key_prefix if key_prefix is not None else settings.key_prefix

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path_for(self, key: str) -> Path:
        if not _VALID_KEY.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self._data_dir / f"{self._prefix}{key}.json"

    async def save(self, key: str, value: Any) -> None:
        """Write the value to a temp file, then atomically replace the target."""
        path = self._path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False, default=str)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to save {key}: {e}")

    async def load(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise CorruptDataError(f"Stored value for {key} is not valid JSON: {e}")
        except OSError as e:
            raise StorageError(f"Failed to load {key}: {e}")

    async def remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove {key}: {e}")

    async def keys(self) -> list[str]:
        if not self._data_dir.exists():
            return []
        keys = []
        for path in sorted(self._data_dir.glob(f"{self._prefix}*.json")):
            keys.append(path.name[len(self._prefix):-len(".json")])
        return keys
