"""
Durable Sync Queue

The queue is the record of remote mutations that have not reached the
backend yet. It survives restarts because every change is written to the
local store immediately.

DESIGN DECISION: One pending item per (entity kind, entity id).
Enqueueing a mutation for an entity that already has a pending item
merges the two so that the queue always holds the latest intended state:

    pending    + new       -> result
    CREATE     + UPDATE    -> CREATE with merged payload
    UPDATE     + UPDATE    -> UPDATE with merged payload
    CREATE     + CREATE    -> CREATE with the new payload
    UPDATE     + CREATE    -> CREATE with merged payload
    any        + DELETE    -> DELETE
    DELETE     + CREATE/UPDATE -> kept as a separate item

DESIGN DECISION: Items are not retried forever. After
`max_retry_attempts` failed attempts an item moves to a dead-letter list,
where it is counted in the status and can be requeued or purged.

The status record (pending/failed counts, progress, syncing flag) is also
owned here so that every write goes through one place and listeners see
every change.
"""

from typing import Any, Callable, Iterable, Optional

import structlog

from buzo_sync.audit import SyncAuditLogger
from buzo_sync.config import SyncSettings, get_settings
from buzo_sync.models.entities import EntityKind, new_entity_id, utc_now
from buzo_sync.models.sync import SyncOperation, SyncQueueItem, SyncStatus
from buzo_sync.services.storage import LocalStoreInterface, StorageKeys


StatusListener = Callable[[SyncStatus], None]


def _coalesce(existing: SyncQueueItem, new: SyncQueueItem) -> Optional[SyncQueueItem]:
    """Merge `new` into the pending `existing` item, or None if both must stay."""
    if existing.operation == SyncOperation.DELETE:
        if new.operation == SyncOperation.DELETE:
            return existing
        return None

    if new.operation == SyncOperation.DELETE:
        operation, data = SyncOperation.DELETE, new.data
    elif existing.operation == SyncOperation.CREATE and new.operation == SyncOperation.CREATE:
        operation, data = SyncOperation.CREATE, new.data
    elif SyncOperation.CREATE in (existing.operation, new.operation):
        operation, data = SyncOperation.CREATE, {**existing.data, **new.data}
    else:
        operation, data = SyncOperation.UPDATE, {**existing.data, **new.data}

    return existing.model_copy(update={
        "operation": operation,
        "data": data,
        "priority": max(existing.priority, new.priority),
        "timestamp": new.timestamp,
        "attempts": 0,
        "last_attempt": None,
        "error": None,
    })


class SyncQueue:
    """
    Priority-ordered queue of pending remote mutations.

    Items are kept in enqueue order; `list_by_priority` sorts by priority
    (descending) and relies on a stable sort to keep that order for ties.
    """

    def __init__(
        self,
        store: LocalStoreInterface,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[SyncAuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().sync
        self._audit = audit_logger
        self._listeners: list[StatusListener] = []
        self._logger = structlog.get_logger()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, status: SyncStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                self._logger.error("sync_status_listener_failed", error=str(e))

    async def init_status(self) -> SyncStatus:
        """Create the status record if it does not exist yet."""
        raw = await self._store.load(StorageKeys.SYNC_STATUS)
        if raw is not None:
            return SyncStatus.model_validate(raw)
        status = SyncStatus(
            pending_count=len(await self._load_items()),
            dead_letter_count=len(await self._load_dead_letters()),
        )
        await self._write_status(status)
        return status

    async def get_status(self) -> SyncStatus:
        raw = await self._store.load(StorageKeys.SYNC_STATUS)
        return SyncStatus.model_validate(raw) if raw is not None else SyncStatus()

    async def update_status(self, **changes: Any) -> SyncStatus:
        status = await self.get_status()
        updated = status.model_copy(update=changes)
        await self._write_status(updated)
        return updated

    async def reset_status(self) -> SyncStatus:
        """Fresh status with counts recomputed from the queue."""
        items = await self._load_items()
        status = SyncStatus(
            pending_count=len(items),
            failed_count=sum(1 for item in items if item.has_failed),
            dead_letter_count=len(await self._load_dead_letters()),
        )
        await self._write_status(status)
        return status

    async def _write_status(self, status: SyncStatus) -> None:
        await self._store.save(StorageKeys.SYNC_STATUS, status.model_dump(mode="json"))
        self._notify(status)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _load_items(self) -> list[SyncQueueItem]:
        raw = await self._store.load(StorageKeys.SYNC_QUEUE) or []
        return [SyncQueueItem.model_validate(item) for item in raw]

    async def _load_dead_letters(self) -> list[SyncQueueItem]:
        raw = await self._store.load(StorageKeys.DEAD_LETTERS) or []
        return [SyncQueueItem.model_validate(item) for item in raw]

    async def _save_items(
        self,
        items: list[SyncQueueItem],
        **status_changes: Any,
    ) -> None:
        """Persist the queue and refresh the counts in the status record."""
        await self._store.save(
            StorageKeys.SYNC_QUEUE,
            [item.model_dump(mode="json") for item in items],
        )
        await self.update_status(
            pending_count=len(items),
            failed_count=sum(1 for item in items if item.has_failed),
            **status_changes,
        )

    async def _save_dead_letters(self, items: list[SyncQueueItem]) -> None:
        await self._store.save(
            StorageKeys.DEAD_LETTERS,
            [item.model_dump(mode="json") for item in items],
        )

    # -------------------------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------------------------

    async def enqueue(self, item: SyncQueueItem, priority: Optional[int] = None) -> SyncQueueItem:
        """
        Add a mutation to the queue, merging it into a pending item for the
        same entity when possible.

        Returns:
            The item as stored (the merged item if coalesced)
        """
        item = item.model_copy(update={
            "priority": priority if priority is not None else item.priority,
            "timestamp": utc_now(),
            "attempts": 0,
            "last_attempt": None,
            "error": None,
        })
        items = await self._load_items()

        for idx in range(len(items) - 1, -1, -1):
            existing = items[idx]
            if existing.entity_kind != item.entity_kind or existing.entity_id != item.entity_id:
                continue
            merged = _coalesce(existing, item)
            if merged is None:
                break
            items[idx] = merged
            await self._save_items(items)
            self._logger.debug(
                "sync_item_coalesced",
                entity_id=item.entity_id,
                previous=existing.operation.value,
                result=merged.operation.value,
            )
            if self._audit:
                await self._audit.log_coalesced(
                    item.entity_kind.value,
                    item.entity_id,
                    existing.operation.value,
                    merged.operation.value,
                )
            return merged

        if any(existing.id == item.id for existing in items):
            item = item.model_copy(update={"id": new_entity_id()})

        items.append(item)
        await self._save_items(items)
        self._logger.info(
            "sync_item_enqueued",
            item_id=item.id,
            entity_kind=item.entity_kind.value,
            entity_id=item.entity_id,
            operation=item.operation.value,
            priority=item.priority,
        )
        if self._audit:
            await self._audit.log_enqueued(
                item.entity_kind.value, item.entity_id, item.operation.value, item.priority
            )
        return item

    async def list_items(self) -> list[SyncQueueItem]:
        """All pending items in enqueue order."""
        return await self._load_items()

    async def list_by_priority(self) -> list[SyncQueueItem]:
        """Pending items, highest priority first; ties keep enqueue order."""
        items = await self._load_items()
        return sorted(items, key=lambda item: item.priority, reverse=True)

    async def get(self, item_id: str) -> Optional[SyncQueueItem]:
        for item in await self._load_items():
            if item.id == item_id:
                return item
        return None

    async def pending_entity_ids(self, kind: EntityKind) -> set[str]:
        return {item.entity_id for item in await self._load_items() if item.entity_kind == kind}

    async def update_item(self, item_id: str, **changes: Any) -> Optional[SyncQueueItem]:
        items = await self._load_items()
        for idx, item in enumerate(items):
            if item.id == item_id:
                items[idx] = item.model_copy(update=changes)
                await self._save_items(items)
                return items[idx]
        return None

    async def remove(self, item_ids: Iterable[str]) -> int:
        """Remove items by id. Returns how many were removed."""
        ids = set(item_ids)
        items = await self._load_items()
        kept = [item for item in items if item.id not in ids]
        removed = len(items) - len(kept)
        if removed:
            await self._save_items(kept)
        return removed

    async def acknowledge(self, item: SyncQueueItem) -> bool:
        """
        Remove an item after the backend accepted it.

        If the item was coalesced with a newer mutation while it was being
        sent, it stays queued so the newer state is sent on the next drain.
        A merged CREATE whose original create just landed becomes an UPDATE.

        Returns:
            True if the item was removed
        """
        items = await self._load_items()
        for idx, current in enumerate(items):
            if current.id != item.id:
                continue
            if current.timestamp == item.timestamp:
                del items[idx]
                await self._save_items(items)
                return True
            if item.operation == SyncOperation.CREATE and current.operation == SyncOperation.CREATE:
                items[idx] = current.model_copy(update={"operation": SyncOperation.UPDATE})
                await self._save_items(items)
            self._logger.info("sync_item_superseded", item_id=item.id, entity_id=item.entity_id)
            return False
        return False

    async def mark_attempt(self, item_id: str, error: Optional[str] = None) -> Optional[SyncQueueItem]:
        """
        Record a sync attempt on an item.

        A failed attempt that reaches `max_retry_attempts` moves the item
        to the dead-letter list; the returned item then has
        `dead_lettered_at` set.

        Returns:
            The updated item, or None if it is not queued
        """
        items = await self._load_items()
        for idx, item in enumerate(items):
            if item.id != item_id:
                continue

            updated = item.model_copy(update={
                "attempts": item.attempts + 1,
                "last_attempt": utc_now(),
                "error": error if error else item.error,
            })
            status_changes = {"error": error} if error else {}

            if error and updated.attempts >= self._settings.max_retry_attempts:
                updated = updated.model_copy(update={"dead_lettered_at": utc_now()})
                dead_letters = await self._load_dead_letters()
                dead_letters.append(updated)
                await self._save_dead_letters(dead_letters)
                del items[idx]
                status_changes["dead_letter_count"] = len(dead_letters)
                self._logger.error(
                    "sync_item_dead_lettered",
                    item_id=item_id,
                    entity_id=item.entity_id,
                    attempts=updated.attempts,
                    error=error,
                )
                if self._audit:
                    await self._audit.log_dead_lettered(
                        item.entity_kind.value,
                        item.entity_id,
                        item.operation.value,
                        updated.attempts,
                        error,
                    )
            else:
                items[idx] = updated

            await self._save_items(items, **status_changes)
            return updated
        return None

    async def get_failed(self) -> list[SyncQueueItem]:
        return [item for item in await self._load_items() if item.has_failed]

    async def reset_failed(self) -> int:
        """Clear attempts and errors so failed items are retried from scratch."""
        items = await self._load_items()
        reset = 0
        for idx, item in enumerate(items):
            if item.has_failed:
                items[idx] = item.model_copy(update={"attempts": 0, "last_attempt": None, "error": None})
                reset += 1
        if reset:
            await self._save_items(items, error=None)
        return reset

    async def clear(self) -> None:
        await self._save_items([], error=None)

    # -------------------------------------------------------------------------
    # Dead letters
    # -------------------------------------------------------------------------

    async def list_dead_letters(self) -> list[SyncQueueItem]:
        return await self._load_dead_letters()

    async def requeue_dead_letters(self, item_ids: Optional[Iterable[str]] = None) -> int:
        """Move dead-lettered items (all, or the given ids) back into the queue."""
        ids = set(item_ids) if item_ids is not None else None
        dead_letters = await self._load_dead_letters()
        requeue = [d for d in dead_letters if ids is None or d.id in ids]
        if not requeue:
            return 0

        remaining = [d for d in dead_letters if d not in requeue]
        await self._save_dead_letters(remaining)
        await self.update_status(dead_letter_count=len(remaining))
        for item in requeue:
            await self.enqueue(item.model_copy(update={"dead_lettered_at": None}), item.priority)
        return len(requeue)

    async def purge_dead_letters(self, item_ids: Optional[Iterable[str]] = None) -> int:
        ids = set(item_ids) if item_ids is not None else None
        dead_letters = await self._load_dead_letters()
        remaining = [d for d in dead_letters if ids is not None and d.id not in ids]
        purged = len(dead_letters) - len(remaining)
        if purged:
            await self._save_dead_letters(remaining)
            await self.update_status(dead_letter_count=len(remaining))
        return purged
