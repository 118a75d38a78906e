"""
Sync Models for Buzo Sync

The queue item and the process-wide sync status record.

DESIGN DECISION: An operation is the pair (SyncOperation, EntityKind).
The processor dispatches on that pair instead of on free-form strings
like "CREATE_BUDGET".
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from buzo_sync.models.entities import EntityKind, EntityOrigin, new_entity_id, utc_now


class SyncOperation(str, Enum):
    """The three semantic mutations the backend understands."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncQueueItem(BaseModel):
    """
    A pending remote mutation.

    `id` is the queue item id. It equals the target entity id unless two
    items for the same entity must coexist, in which case it is generated.

    Payload shape by operation:
    - CREATE: full entity
    - UPDATE: changed fields plus id
    - DELETE: {"id": ...}
    """
    id: str = Field(default_factory=new_entity_id)
    operation: SyncOperation
    entity_kind: EntityKind
    entity_id: str
    table: str = Field(..., description="Remote collection name")
    data: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=1, description="Higher is served first")
    origin: EntityOrigin = EntityOrigin.REMOTE

    timestamp: datetime = Field(default_factory=utc_now)
    attempts: int = Field(default=0, ge=0)
    last_attempt: Optional[datetime] = None
    error: Optional[str] = None
    dead_lettered_at: Optional[datetime] = None

    @property
    def has_failed(self) -> bool:
        return bool(self.error)

    def describe(self) -> str:
        return f"{self.operation.value} {self.entity_kind.value} {self.entity_id}"


class SyncStatus(BaseModel):
    """
    Aggregate sync state, persisted as a single record.

    Only the sync processor flips `is_syncing`. Counts are recomputed by the
    queue whenever its contents change.
    """
    last_sync_attempt: Optional[datetime] = None
    last_successful_sync: Optional[datetime] = None
    is_syncing: bool = False
    pending_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    dead_letter_count: int = Field(default=0, ge=0)
    sync_progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None

    def is_stale(self, max_age_seconds: int, now: Optional[datetime] = None) -> bool:
        """True when is_syncing has been set for longer than max_age_seconds."""
        if not self.is_syncing:
            return False
        if self.last_sync_attempt is None:
            return True
        now = now or utc_now()
        return (now - self.last_sync_attempt).total_seconds() > max_age_seconds


class SyncReport(BaseModel):
    """Summary of one drain of the sync queue."""
    skipped: bool = Field(
        default=False,
        description="True when another drain was already running"
    )
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    dead_lettered: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def all_succeeded(self) -> bool:
        return not self.skipped and self.failed == 0
