"""
Sync Processor

Drains the sync queue against the remote gateways and keeps local
collections reconciled with the backend.

DESIGN DECISION: Single-flight drains.
A second `process_all()` while one is running returns immediately with a
skipped report; it is not queued. The in-process flag is set before the
first suspension point, so two tasks started back to back cannot both
pass the check. The persisted `is_syncing` flag covers a drain left
behind by a crash: once it is older than `stale_sync_seconds` it is
reset and the drain proceeds.

Per-item outcome:
- success -> acknowledged (removed)
- duplicate key on create / not found on update or delete -> already
  applied, acknowledged
- any other failure -> attempt recorded, item stays queued (or is
  dead-lettered once it runs out of attempts)

Items are sent serially in priority order. Items enqueued during a drain
wait for the next one.
"""

import asyncio
from typing import Callable, Optional

import structlog

from buzo_sync.audit import SyncAuditLogger
from buzo_sync.config import SyncSettings, get_settings
from buzo_sync.models.audit import SyncEventBuilder
from buzo_sync.models.entities import ENTITY_MODELS, EntityKind, EntityOrigin, utc_now
from buzo_sync.models.sync import SyncOperation, SyncQueueItem, SyncReport, SyncStatus
from buzo_sync.services.connectivity import ConnectivityOracle
from buzo_sync.services.remote import (
    DuplicateKeyError,
    RemoteEntityGateway,
    RemoteError,
    RemoteNotFoundError,
)
from buzo_sync.services.storage import LocalCollection, LocalStoreInterface
from buzo_sync.sync.queue import SyncQueue


class SyncProcessor:
    """Replays queued mutations and reconciles local and remote copies."""

    def __init__(
        self,
        queue: SyncQueue,
        gateways: dict[EntityKind, RemoteEntityGateway],
        store: LocalStoreInterface,
        connectivity: Optional[ConnectivityOracle] = None,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[SyncAuditLogger] = None,
    ):
        self._queue = queue
        self._gateways = gateways
        self._collections = {kind: LocalCollection(store, kind) for kind in EntityKind}
        self._connectivity = connectivity
        self._settings = settings or get_settings().sync
        self._audit = audit_logger
        self._in_flight = False
        self._logger = structlog.get_logger()

    @property
    def is_running(self) -> bool:
        return self._in_flight

    def add_listener(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Subscribe to status changes. Returns an unsubscribe callable."""
        return self._queue.add_listener(listener)

    async def get_status(self) -> SyncStatus:
        return await self._queue.get_status()

    # -------------------------------------------------------------------------
    # Drain
    # -------------------------------------------------------------------------

    async def process_all(self) -> SyncReport:
        """
        Send every queued item to the backend, highest priority first.

        Returns:
            Report of the drain; `skipped` is True if another drain was running
        """
        if self._in_flight:
            self._logger.info("sync_skipped", reason="drain_in_progress")
            return SyncReport(skipped=True)
        self._in_flight = True

        try:
            status = await self._queue.get_status()
            if status.is_syncing:
                if not status.is_stale(self._settings.stale_sync_seconds):
                    self._logger.info("sync_skipped", reason="persisted_flag_set")
                    return SyncReport(skipped=True)
                self._logger.warning(
                    "stale_sync_reset",
                    last_sync_attempt=str(status.last_sync_attempt),
                )
                if self._audit:
                    await self._audit.log(SyncEventBuilder.stale_sync_reset(status.last_sync_attempt))

            return await self._drain()
        finally:
            self._in_flight = False

    async def _drain(self) -> SyncReport:
        await self._queue.update_status(
            is_syncing=True,
            last_sync_attempt=utc_now(),
            sync_progress=0,
        )
        report = SyncReport()

        try:
            items = await self._queue.list_by_priority()
            report.total = len(items)
            if items and self._audit:
                await self._audit.log(SyncEventBuilder.drain_started(len(items)))

            for index, item in enumerate(items):
                await self._queue.update_status(sync_progress=round(index / len(items) * 100))
                await self._process_item(item, report)
        finally:
            changes = {"is_syncing": False, "sync_progress": 100}
            if report.succeeded > 0:
                changes["last_successful_sync"] = utc_now()
            if report.failed == 0:
                changes["error"] = None
            await self._queue.update_status(**changes)
            report.finished_at = utc_now()

        self._logger.info(
            "sync_completed",
            total=report.total,
            succeeded=report.succeeded,
            failed=report.failed,
            dead_lettered=report.dead_lettered,
        )
        if report.total and self._audit:
            await self._audit.log(SyncEventBuilder.drain_completed(
                report.total, report.succeeded, report.failed, report.dead_lettered
            ))
        return report

    async def _process_item(self, item: SyncQueueItem, report: SyncReport) -> None:
        try:
            converged = await self._dispatch(item)
        except Exception as e:
            reason = str(e) or type(e).__name__
            updated = await self._queue.mark_attempt(item.id, reason)
            report.failed += 1
            if updated is not None and updated.dead_lettered_at is not None:
                report.dead_lettered += 1
            self._logger.warning(
                "sync_item_failed",
                item_id=item.id,
                operation=item.operation.value,
                entity_id=item.entity_id,
                error=reason,
            )
            if self._audit:
                await self._audit.log_sync_failed(
                    item.entity_kind.value,
                    item.entity_id,
                    item.operation.value,
                    updated.attempts if updated else item.attempts + 1,
                    reason,
                )
            return

        await self._queue.acknowledge(item)
        report.succeeded += 1
        if self._audit:
            await self._audit.log_synced(
                item.entity_kind.value, item.entity_id, item.operation.value, converged
            )

    async def _dispatch(self, item: SyncQueueItem) -> bool:
        """
        Apply one item remotely.

        Returns:
            True if the backend already held the desired state
        """
        gateway = self._gateways.get(item.entity_kind)
        if gateway is None:
            raise RemoteError(f"No remote gateway for {item.entity_kind.value}")

        if item.operation == SyncOperation.CREATE:
            entity = ENTITY_MODELS[item.entity_kind].model_validate(item.data)
            try:
                remote = await gateway.create(entity)
            except DuplicateKeyError:
                self._logger.info("sync_create_already_applied", entity_id=item.entity_id)
                await self._collections[item.entity_kind].confirm(item.entity_id)
                return True
            await self._collections[item.entity_kind].confirm(item.entity_id, remote)
            return False

        if item.operation == SyncOperation.UPDATE:
            try:
                await gateway.update(item.entity_id, item.data)
            except RemoteNotFoundError:
                self._logger.info("sync_update_target_missing", entity_id=item.entity_id)
                return True
            return False

        try:
            await gateway.delete(item.entity_id)
        except RemoteNotFoundError:
            self._logger.info("sync_delete_already_applied", entity_id=item.entity_id)
            return True
        return False

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile(self, kind: EntityKind) -> int:
        """
        Compare local and remote copies of one collection.

        - Local-origin entities missing remotely with nothing queued get a
          CREATE enqueued.
        - Entities present on both sides: the newer `updated_at` wins; a newer
          local copy gets an UPDATE enqueued.
        - Remote-only entities are added locally; remote-origin entities that
          vanished remotely (and have nothing queued) are dropped locally.
        - Entities with queued mutations are left as they are; one deleted
          locally with its DELETE still queued is not brought back.

        Returns:
            Number of items enqueued
        """
        gateway = self._gateways[kind]
        collection = self._collections[kind]

        remote_by_id = {entity.id: entity for entity in await gateway.list()}
        pending = await self._queue.pending_entity_ids(kind)
        merged = []
        to_enqueue: list[tuple[SyncOperation, dict, str]] = []

        for local in await collection.all():
            remote = remote_by_id.pop(local.id, None)

            if local.id in pending:
                merged.append(local)
            elif remote is None:
                if local.is_local_only:
                    to_enqueue.append((SyncOperation.CREATE, local.to_storage_dict(), local.id))
                    merged.append(local)
                else:
                    self._logger.info("local_entity_removed_remotely", kind=kind.value, entity_id=local.id)
            elif local.is_newer_than(remote):
                confirmed = local.model_copy(update={"origin": EntityOrigin.REMOTE})
                to_enqueue.append((SyncOperation.UPDATE, confirmed.to_storage_dict(), local.id))
                merged.append(confirmed)
                await self._log_conflict(kind, local.id, "local")
            else:
                if remote.is_newer_than(local):
                    await self._log_conflict(kind, local.id, "remote")
                merged.append(remote)

        merged.extend(e for e in remote_by_id.values() if e.id not in pending)
        await collection.replace_all(merged)

        for operation, data, entity_id in to_enqueue:
            await self._queue.enqueue(
                SyncQueueItem(
                    id=entity_id,
                    operation=operation,
                    entity_kind=kind,
                    entity_id=entity_id,
                    table=gateway.table,
                    data=data,
                    origin=EntityOrigin(data.get("origin", EntityOrigin.REMOTE.value)),
                ),
                self._reconcile_priority(kind, operation),
            )
        return len(to_enqueue)

    def _reconcile_priority(self, kind: EntityKind, operation: SyncOperation) -> int:
        if kind == EntityKind.EXPENSE:
            return self._settings.expense_priority
        if operation == SyncOperation.CREATE:
            if kind == EntityKind.BUDGET:
                return self._settings.budget_create_priority
            return self._settings.savings_goal_create_priority
        return self._settings.update_priority

    async def _log_conflict(self, kind: EntityKind, entity_id: str, winner: str) -> None:
        self._logger.info("sync_conflict_resolved", kind=kind.value, entity_id=entity_id, winner=winner)
        if self._audit:
            await self._audit.log(SyncEventBuilder.conflict_resolved(kind.value, entity_id, winner))

    async def pull_latest(self, kind: EntityKind) -> int:
        """
        Refresh a local collection from the backend.

        Entities with queued mutations, and local-origin entities, keep
        their local copy. Entities deleted locally with a DELETE still queued
        stay deleted.

        Returns:
            Number of entities taken from the backend
        """
        remote_entities = await self._gateways[kind].list()
        collection = self._collections[kind]
        pending = await self._queue.pending_entity_ids(kind)

        kept_local = {
            entity.id: entity
            for entity in await collection.all()
            if entity.id in pending or entity.is_local_only
        }
        merged = [
            kept_local.pop(e.id, e)
            for e in remote_entities
            if e.id in kept_local or e.id not in pending
        ]
        merged.extend(kept_local.values())
        await collection.replace_all(merged)
        return sum(1 for e in merged if e.origin == EntityOrigin.REMOTE and e.id not in pending)

    async def full_sync(self) -> Optional[SyncReport]:
        """
        Reconcile every collection, drain the queue, then pull the latest data.

        Returns:
            The drain report, or None if offline
        """
        if self._connectivity is not None and not await self._connectivity.is_online():
            self._logger.info("full_sync_skipped", reason="offline")
            return None

        for kind in self._gateways:
            try:
                await self.reconcile(kind)
            except Exception as e:
                self._logger.error("reconcile_failed", kind=kind.value, error=str(e))

        report = await self.process_all()

        if not report.skipped:
            for kind in self._gateways:
                try:
                    await self.pull_latest(kind)
                except Exception as e:
                    self._logger.error("pull_latest_failed", kind=kind.value, error=str(e))
        return report

    async def run_periodically(
        self,
        stop: asyncio.Event,
        interval_seconds: Optional[float] = None,
    ) -> None:
        """Run `full_sync` every interval until `stop` is set."""
        interval = interval_seconds or self._settings.sync_interval_minutes * 60
        while not stop.is_set():
            try:
                await self.full_sync()
            except Exception as e:
                self._logger.error("periodic_sync_failed", error=str(e))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
