"""
Typed collections over the key-value store.

Each entity kind lives under one key as a JSON list, in insertion order.
The audit log is a bounded list under its own key.
"""

from typing import Generic, Optional, TypeVar

from pydantic import ValidationError

from buzo_sync.models.audit import SyncEvent
from buzo_sync.models.entities import (
    ENTITY_MODELS,
    Entity,
    EntityKind,
    EntityOrigin,
)
from buzo_sync.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    LocalStoreInterface,
)


class StorageKeys:
    """Keys owned by the sync core."""
    EXPENSES = "expenses"
    BUDGETS = "budgets"
    SAVINGS_GOALS = "savings_goals"
    SYNC_QUEUE = "sync_queue"
    SYNC_STATUS = "sync_status"
    DEAD_LETTERS = "sync_dead_letters"
    AUDIT_LOG = "sync_audit_log"

    @classmethod
    def for_kind(cls, kind: EntityKind) -> str:
        return {
            EntityKind.EXPENSE: cls.EXPENSES,
            EntityKind.BUDGET: cls.BUDGETS,
            EntityKind.SAVINGS_GOAL: cls.SAVINGS_GOALS,
        }[kind]


E = TypeVar("E", bound=Entity)


class LocalCollection(Generic[E]):
    """
    Local copy of one entity collection.

    Every method loads the full list and (for writes) saves it back.
    Reads-then-writes are not atomic across concurrent callers.
    """

    def __init__(self, store: LocalStoreInterface, kind: EntityKind):
        self._store = store
        self._kind = kind
        self._model: type[E] = ENTITY_MODELS[kind]
        self._key = StorageKeys.for_kind(kind)

    @property
    def kind(self) -> EntityKind:
        return self._kind

    async def _load_raw(self) -> list[dict]:
        raw = await self._store.load(self._key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CorruptDataError(f"Collection {self._key} is not a list")
        return raw

    def _parse(self, raw: dict) -> E:
        try:
            return self._model.model_validate(raw)
        except ValidationError as e:
            raise CorruptDataError(f"Invalid {self._kind.value} in {self._key}: {e}")

    async def all(self) -> list[E]:
        return [self._parse(item) for item in await self._load_raw()]

    async def get(self, entity_id: str) -> Optional[E]:
        for item in await self._load_raw():
            if item.get("id") == entity_id:
                return self._parse(item)
        return None

    async def put(self, entity: E) -> E:
        """Insert or replace by id, keeping the position of an existing entry."""
        raw = await self._load_raw()
        doc = entity.to_storage_dict()
        for idx, item in enumerate(raw):
            if item.get("id") == entity.id:
                raw[idx] = doc
                break
        else:
            raw.append(doc)
        await self._store.save(self._key, raw)
        return entity

    async def remove(self, entity_id: str) -> bool:
        raw = await self._load_raw()
        kept = [item for item in raw if item.get("id") != entity_id]
        if len(kept) == len(raw):
            return False
        await self._store.save(self._key, kept)
        return True

    async def replace_all(self, entities: list[E]) -> None:
        await self._store.save(self._key, [e.to_storage_dict() for e in entities])

    async def confirm(self, entity_id: str, remote: Optional[E] = None) -> Optional[E]:
        """
        Mark a locally created entity as confirmed by the backend.

        If the backend returned its own copy under a different id, the local
        entry is re-keyed to the backend id.
        """
        current = await self.get(entity_id)
        if current is None:
            return None
        confirmed = current.model_copy(update={"origin": EntityOrigin.REMOTE})
        if remote is not None and remote.id != entity_id:
            await self.remove(entity_id)
            confirmed = confirmed.model_copy(update={"id": remote.id})
        return await self.put(confirmed)


class LocalAuditStorage(AuditStorageInterface):
    """Bounded audit log kept in the local store."""

    def __init__(self, store: LocalStoreInterface, max_events: int = 500):
        self._store = store
        self._max_events = max_events

    async def _load(self) -> list[dict]:
        raw = await self._store.load(StorageKeys.AUDIT_LOG)
        return raw if isinstance(raw, list) else []

    async def append_event(self, event: SyncEvent) -> bool:
        if self._max_events == 0:
            return True
        events = await self._load()
        events.append(event.model_dump(mode="json"))
        await self._store.save(StorageKeys.AUDIT_LOG, events[-self._max_events:])
        return True

    async def get_recent_events(self, limit: int = 100) -> list[SyncEvent]:
        events = [SyncEvent.model_validate(e) for e in await self._load()]
        return list(reversed(events))[:limit]

    async def get_events_by_entity(self, entity_id: str) -> list[SyncEvent]:
        return [
            SyncEvent.model_validate(e)
            for e in await self._load()
            if e.get("entity_id") == entity_id
        ]
