"""Sync queue and processor package."""

from buzo_sync.sync.queue import SyncQueue
from buzo_sync.sync.processor import SyncProcessor

__all__ = [
    "SyncProcessor",
    "SyncQueue",
]
