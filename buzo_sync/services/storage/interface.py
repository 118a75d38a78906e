"""
Abstract Local Storage Interface

DESIGN DECISION: Local persistence is a plain key-value contract.
This allows us to:
1. Use JSON files on disk in the app
2. Use in-memory storage for testing
3. Swap in SQLite or a platform store later

There are no transactions across keys. A mutation that writes an entity
and then enqueues it can be interrupted between the two writes; the
reconcile pass of the sync processor repairs that window.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from buzo_sync.models.audit import SyncEvent


class LocalStoreInterface(ABC):
    """
    Abstract interface for key-value persistence.

    Values are JSON-compatible (dicts, lists, strings, numbers, bools, None).
    """

    @abstractmethod
    async def save(self, key: str, value: Any) -> None:
        """
        Persist a value under a key, replacing any previous value.

        Args:
            key: Storage key (without the configured prefix)
            value: JSON-compatible value

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def load(self, key: str) -> Optional[Any]:
        """
        Load the value stored under a key.

        Args:
            key: Storage key

        Returns:
            The stored value, or None if the key is absent

        Raises:
            CorruptDataError: If the stored value cannot be decoded
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """
        Remove a key. Removing an absent key is not an error.

        Raises:
            StorageError: If the removal fails
        """
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys (without the prefix)."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never modify stored events.
    """

    @abstractmethod
    async def append_event(self, event: SyncEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[SyncEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass

    @abstractmethod
    async def get_events_by_entity(self, entity_id: str) -> list[SyncEvent]:
        """Get all events for one entity in chronological order."""
        pass


class StorageError(Exception):
    """Base exception for local storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in the local store."""
    pass


class CorruptDataError(StorageError):
    """A stored value could not be decoded."""
    pass
