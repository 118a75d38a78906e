"""
Audit Models for Buzo Sync

Every queue transition and every failed side effect is recorded as an
audit event. This provides:
1. Traceability of what was sent to the backend and when
2. Debugging information when an item keeps failing
3. A history the app can show behind the aggregate failed count

DESIGN DECISION: Audit logs are append-only. The local audit log is
bounded and drops its oldest events first.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from buzo_sync.models.entities import utc_now


class SyncEventType(str, Enum):
    """Types of events we audit."""
    # Queue
    ITEM_ENQUEUED = "item_enqueued"
    ITEM_COALESCED = "item_coalesced"
    ITEM_SYNCED = "item_synced"
    ITEM_SYNC_FAILED = "item_sync_failed"
    ITEM_DEAD_LETTERED = "item_dead_lettered"

    # Drains
    DRAIN_STARTED = "drain_started"
    DRAIN_COMPLETED = "drain_completed"
    DRAIN_SKIPPED = "drain_skipped"
    STALE_SYNC_RESET = "stale_sync_reset"

    # Entity services
    REMOTE_DEFERRED = "remote_deferred"
    CONFLICT_RESOLVED = "conflict_resolved"
    SIDE_EFFECT_FAILED = "side_effect_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SyncEvent(BaseModel):
    """A single audit log entry."""
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: SyncEventType
    severity: AuditSeverity = AuditSeverity.INFO

    entity_kind: Optional[str] = None
    entity_id: Optional[str] = None
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict[str, Any]:
        """Flatten for the structured logger."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class SyncEventBuilder:
    """Factory helpers for the common audit events."""

    @staticmethod
    def item_enqueued(entity_kind: str, entity_id: str, operation: str, priority: int) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.ITEM_ENQUEUED,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Queued {operation} for {entity_kind} {entity_id}",
            details={"operation": operation, "priority": priority},
        )

    @staticmethod
    def item_coalesced(
        entity_kind: str,
        entity_id: str,
        previous_operation: str,
        resulting_operation: str,
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.ITEM_COALESCED,
            severity=AuditSeverity.DEBUG,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Merged pending {previous_operation} into {resulting_operation}",
            details={
                "previous_operation": previous_operation,
                "resulting_operation": resulting_operation,
            },
        )

    @staticmethod
    def item_synced(entity_kind: str, entity_id: str, operation: str, converged: bool) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.ITEM_SYNCED,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Synced {operation} for {entity_kind} {entity_id}",
            details={"operation": operation, "already_applied": converged},
        )

    @staticmethod
    def item_sync_failed(
        entity_kind: str,
        entity_id: str,
        operation: str,
        attempts: int,
        error_message: str,
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.ITEM_SYNC_FAILED,
            severity=AuditSeverity.WARNING,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Sync of {operation} failed (attempt {attempts})",
            details={"operation": operation, "attempts": attempts},
            error_message=error_message,
        )

    @staticmethod
    def item_dead_lettered(
        entity_kind: str,
        entity_id: str,
        operation: str,
        attempts: int,
        error_message: Optional[str],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.ITEM_DEAD_LETTERED,
            severity=AuditSeverity.ERROR,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Gave up on {operation} after {attempts} attempts",
            details={"operation": operation, "attempts": attempts},
            error_message=error_message,
        )

    @staticmethod
    def drain_started(total: int) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.DRAIN_STARTED,
            description=f"Sync started with {total} queued items",
            details={"total": total},
        )

    @staticmethod
    def drain_completed(total: int, succeeded: int, failed: int, dead_lettered: int) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.DRAIN_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            description=f"Sync finished: {succeeded}/{total} succeeded",
            details={
                "total": total,
                "succeeded": succeeded,
                "failed": failed,
                "dead_lettered": dead_lettered,
            },
        )

    @staticmethod
    def stale_sync_reset(last_sync_attempt: Optional[datetime]) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.STALE_SYNC_RESET,
            severity=AuditSeverity.WARNING,
            description="Reset a sync flag left over from an interrupted run",
            details={
                "last_sync_attempt": last_sync_attempt.isoformat() if last_sync_attempt else None,
            },
        )

    @staticmethod
    def remote_deferred(entity_kind: str, entity_id: str, operation: str, reason: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.REMOTE_DEFERRED,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Deferred {operation} to the sync queue",
            details={"operation": operation, "reason": reason},
        )

    @staticmethod
    def conflict_resolved(entity_kind: str, entity_id: str, winner: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.CONFLICT_RESOLVED,
            entity_kind=entity_kind,
            entity_id=entity_id,
            description=f"Kept the {winner} copy of {entity_kind} {entity_id}",
            details={"winner": winner},
        )

    @staticmethod
    def side_effect_failed(name: str, entity_id: str, error_message: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.SIDE_EFFECT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_id=entity_id,
            description=f"Side effect '{name}' failed",
            details={"side_effect": name},
            error_message=error_message,
        )
