"""
Entity Service Base

Shared online/offline mutation logic for expenses, budgets and savings
goals. Every mutation:
1. Writes the local store (the local copy is always authoritative for the UI)
2. Tries the backend directly when online
3. Falls back to the sync queue when offline or when the backend call fails

DESIGN DECISION: Entities created while offline are marked LOCAL.
Updates and deletes on LOCAL entities never call the backend; they are
queued and merged into the pending create by the sync queue.

Reclassified remote errors:
- DuplicateKeyError on create: the create already landed; use the remote copy
- RemoteNotFoundError on update/delete: nothing left to change remotely
"""

from typing import Any, ClassVar, Generic, Optional, TypeVar

import structlog
from pydantic import ValidationError

from buzo_sync.audit import SyncAuditLogger
from buzo_sync.config import SyncSettings, get_settings
from buzo_sync.models.entities import Entity, EntityKind, EntityOrigin
from buzo_sync.models.sync import SyncOperation, SyncQueueItem
from buzo_sync.services.connectivity import ConnectivityOracle
from buzo_sync.services.integrations import Notifier, UserIdentityProvider
from buzo_sync.services.remote import (
    DuplicateKeyError,
    RemoteEntityGateway,
    RemoteError,
    RemoteNotFoundError,
)
from buzo_sync.services.storage import LocalCollection, LocalStoreInterface, NotFoundError
from buzo_sync.sync.queue import SyncQueue


E = TypeVar("E", bound=Entity)

DEFAULT_TABLES = {
    EntityKind.EXPENSE: "expenses",
    EntityKind.BUDGET: "budgets",
    EntityKind.SAVINGS_GOAL: "savings_goals",
}

# Fields callers may never set through update()
PROTECTED_FIELDS = {"id", "origin", "created_at", "updated_at", "user_id"}


class UnauthenticatedError(Exception):
    """No signed-in user could be resolved."""
    pass


class EntityService(Generic[E]):
    """
    Single point of mutation for one entity kind.

    Subclasses add the cross-entity side effects on top of
    `_create_entity`, `_persist_update` and `_delete_entity`.
    """

    kind: ClassVar[EntityKind]
    model: ClassVar[type[Entity]]

    def __init__(
        self,
        store: LocalStoreInterface,
        queue: SyncQueue,
        identity: UserIdentityProvider,
        connectivity: ConnectivityOracle,
        gateway: Optional[RemoteEntityGateway] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[SyncAuditLogger] = None,
    ):
        self._collection: LocalCollection = LocalCollection(store, self.kind)
        self._queue = queue
        self._identity = identity
        self._connectivity = connectivity
        self._gateway = gateway
        self._notifier = notifier
        self._settings = settings or get_settings().sync
        self._audit = audit_logger
        self._logger = structlog.get_logger().bind(entity_kind=self.kind.value)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, entity_id: str) -> Optional[E]:
        """The local copy of an entity, or None."""
        return await self._collection.get(entity_id)

    async def get_all(self) -> list[E]:
        return await self._collection.all()

    async def _require(self, entity_id: str) -> E:
        entity = await self._collection.get(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.kind.value} not found: {entity_id}")
        return entity

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _require_user(self) -> str:
        user_id = await self._identity.get_current_user_id()
        if not user_id:
            raise UnauthenticatedError(f"Cannot create {self.kind.value}: no signed-in user")
        return user_id

    async def _is_online(self) -> bool:
        if self._gateway is None:
            return False
        try:
            return await self._connectivity.is_online()
        except Exception as e:
            self._logger.warning("connectivity_check_failed", error=str(e))
            return False

    @property
    def _table(self) -> str:
        return self._gateway.table if self._gateway is not None else DEFAULT_TABLES[self.kind]

    def _priority_for(self, operation: SyncOperation) -> int:
        if operation == SyncOperation.DELETE:
            return self._settings.delete_priority
        if operation == SyncOperation.CREATE:
            return self._create_priority()
        return self._settings.update_priority

    def _create_priority(self) -> int:
        return self._settings.update_priority

    async def _enqueue(
        self,
        operation: SyncOperation,
        entity_id: str,
        data: dict[str, Any],
        origin: EntityOrigin,
        reason: str,
    ) -> SyncQueueItem:
        item = await self._queue.enqueue(
            SyncQueueItem(
                id=entity_id,
                operation=operation,
                entity_kind=self.kind,
                entity_id=entity_id,
                table=self._table,
                data=data,
                origin=origin,
            ),
            self._priority_for(operation),
        )
        if self._audit:
            await self._audit.log_remote_deferred(self.kind.value, entity_id, operation.value, reason)
        return item

    def _merge(self, current: E, changes: dict[str, Any]) -> E:
        """Validated copy of `current` with `changes` applied."""
        protected = PROTECTED_FIELDS.intersection(changes)
        if protected:
            raise ValueError(f"Fields cannot be updated directly: {sorted(protected)}")
        data = current.model_dump()
        data.update(changes)
        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid {self.kind.value} update: {e}") from e

    # -------------------------------------------------------------------------
    # Primary mutations
    # -------------------------------------------------------------------------

    async def _create_entity(self, entity: E) -> E:
        """
        Create an entity, remotely if possible, always locally.

        Raises:
            UnauthenticatedError: If no user is signed in
        """
        user_id = await self._require_user()
        entity = entity.model_copy(update={"user_id": user_id, "origin": EntityOrigin.REMOTE})
        entity.touch()

        stored: Optional[E] = None
        reason = "offline"
        if await self._is_online():
            try:
                stored = await self._gateway.create(entity)
            except DuplicateKeyError:
                stored = await self._recover_duplicate(entity)
                reason = "duplicate_unresolved"
            except RemoteError as e:
                reason = str(e) or type(e).__name__
                self._logger.warning("remote_create_failed", entity_id=entity.id, error=reason)

        if stored is not None:
            stored = stored.model_copy(update={"origin": EntityOrigin.REMOTE})
            await self._collection.put(stored)
            self._logger.info("entity_created", entity_id=stored.id, remote=True)
            return stored

        local = entity.model_copy(update={"origin": EntityOrigin.LOCAL})
        await self._collection.put(local)
        await self._enqueue(
            SyncOperation.CREATE, local.id, local.to_storage_dict(), EntityOrigin.LOCAL, reason
        )
        self._logger.info("entity_created", entity_id=local.id, remote=False)
        return local

    async def _recover_duplicate(self, entity: E) -> Optional[E]:
        """A create collided with an existing row: adopt the remote copy."""
        try:
            existing = await self._gateway.get_by_id(entity.id)
        except RemoteError as e:
            self._logger.warning("duplicate_recovery_failed", entity_id=entity.id, error=str(e))
            return None
        if existing is not None:
            self._logger.info("remote_duplicate_adopted", entity_id=entity.id)
        return existing

    async def _update_entity(self, entity_id: str, changes: dict[str, Any]) -> tuple[E, E]:
        """
        Apply `changes` to the local copy and propagate them.

        Returns:
            (previous, updated)

        Raises:
            NotFoundError: If the entity is not in the local store
            ValueError: If the changes are invalid
        """
        current = await self._require(entity_id)
        updated = self._merge(current, changes)
        return current, await self._persist_update(current, updated)

    async def _persist_update(self, current: E, updated: E) -> E:
        """Write an already-built updated copy locally and remotely (or queue it)."""
        updated.touch()
        before = current.to_storage_dict()
        after = updated.to_storage_dict()
        payload = {
            key: value
            for key, value in after.items()
            if key != "origin" and before.get(key) != value
        }
        payload["id"] = updated.id

        await self._collection.put(updated)

        if updated.is_local_only:
            # Nothing to update remotely yet; merged into the pending create
            await self._enqueue(
                SyncOperation.UPDATE, updated.id, payload, EntityOrigin.LOCAL, "pending_create"
            )
            return updated

        reason = "offline"
        if await self._is_online():
            try:
                await self._gateway.update(updated.id, payload)
                return updated
            except RemoteNotFoundError:
                self._logger.warning("remote_update_target_missing", entity_id=updated.id)
                return updated
            except RemoteError as e:
                reason = str(e) or type(e).__name__
                self._logger.warning("remote_update_failed", entity_id=updated.id, error=reason)

        await self._enqueue(SyncOperation.UPDATE, updated.id, payload, EntityOrigin.REMOTE, reason)
        return updated

    async def _delete_entity(self, entity_id: str) -> Optional[E]:
        """
        Delete locally and remotely (or queue it).

        Returns:
            The deleted entity, or None if it was already gone
        """
        current = await self._collection.get(entity_id)
        if current is None:
            self._logger.info("delete_already_applied", entity_id=entity_id)
            return None

        await self._collection.remove(entity_id)
        data = {"id": entity_id}

        if current.is_local_only:
            await self._enqueue(
                SyncOperation.DELETE, entity_id, data, EntityOrigin.LOCAL, "pending_create"
            )
            return current

        reason = "offline"
        if await self._is_online():
            try:
                await self._gateway.delete(entity_id)
                return current
            except RemoteNotFoundError:
                return current
            except RemoteError as e:
                reason = str(e) or type(e).__name__
                self._logger.warning("remote_delete_failed", entity_id=entity_id, error=reason)

        await self._enqueue(SyncOperation.DELETE, entity_id, data, EntityOrigin.REMOTE, reason)
        return current
