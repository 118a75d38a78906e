"""
Storage Services Package

Provides the key-value interface for local persistence and its
implementations, plus typed entity collections layered on top.
"""

from buzo_sync.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    LocalStoreInterface,
    NotFoundError,
    StorageError,
)
from buzo_sync.services.storage.collections import (
    LocalAuditStorage,
    LocalCollection,
    StorageKeys,
)
from buzo_sync.services.storage.json_file import JsonFileStore
from buzo_sync.services.storage.memory import InMemoryStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LocalStoreInterface",
    # Exceptions
    "CorruptDataError",
    "NotFoundError",
    "StorageError",
    # Collections
    "LocalAuditStorage",
    "LocalCollection",
    "StorageKeys",
    # Implementations
    "InMemoryStore",
    "JsonFileStore",
]
