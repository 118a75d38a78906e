"""
Sync Audit Logger

DESIGN DECISION: Every queue transition is logged.
This provides:
1. Traceability of what reached the backend and when
2. Debugging capability for items that keep failing
3. A history the app can show next to the failed count

The audit logger:
- Always writes to the structured local log
- Persists to an audit store when one is configured
- Never raises: an audit failure must not fail a sync
"""

import logging
from typing import Optional

import structlog

from buzo_sync.models.audit import AuditSeverity, SyncEvent, SyncEventBuilder
from buzo_sync.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class SyncAuditLogger:
    """
    Central audit logging service for the sync core.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: SyncEvent) -> bool:
        """
        Log an audit event.

        Returns True if the storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("sync_audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("sync_audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("sync_audit_event", **log_dict)
        else:
            self._logger.info("sync_audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_enqueued(self, entity_kind: str, entity_id: str, operation: str, priority: int) -> None:
        await self.log(SyncEventBuilder.item_enqueued(entity_kind, entity_id, operation, priority))

    async def log_coalesced(
        self,
        entity_kind: str,
        entity_id: str,
        previous_operation: str,
        resulting_operation: str,
    ) -> None:
        await self.log(SyncEventBuilder.item_coalesced(
            entity_kind, entity_id, previous_operation, resulting_operation
        ))

    async def log_synced(self, entity_kind: str, entity_id: str, operation: str, converged: bool) -> None:
        await self.log(SyncEventBuilder.item_synced(entity_kind, entity_id, operation, converged))

    async def log_sync_failed(
        self,
        entity_kind: str,
        entity_id: str,
        operation: str,
        attempts: int,
        error_message: str,
    ) -> None:
        await self.log(SyncEventBuilder.item_sync_failed(
            entity_kind, entity_id, operation, attempts, error_message
        ))

    async def log_dead_lettered(
        self,
        entity_kind: str,
        entity_id: str,
        operation: str,
        attempts: int,
        error_message: Optional[str],
    ) -> None:
        await self.log(SyncEventBuilder.item_dead_lettered(
            entity_kind, entity_id, operation, attempts, error_message
        ))

    async def log_remote_deferred(self, entity_kind: str, entity_id: str, operation: str, reason: str) -> None:
        await self.log(SyncEventBuilder.remote_deferred(entity_kind, entity_id, operation, reason))

    async def log_side_effect_failed(self, name: str, entity_id: str, error_message: str) -> None:
        await self.log(SyncEventBuilder.side_effect_failed(name, entity_id, error_message))
