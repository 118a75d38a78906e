"""
Tests for the sync audit logger and best-effort side effects.
"""

import pytest

from buzo_sync.audit import SyncAuditLogger
from buzo_sync.entities import run_side_effect
from buzo_sync.models import SyncEventBuilder, SyncEventType
from buzo_sync.services.storage import AuditStorageInterface, InMemoryStore, LocalAuditStorage


class BrokenAuditStorage(AuditStorageInterface):
    async def append_event(self, event):
        raise OSError("disk full")

    async def get_recent_events(self, limit=100):
        return []

    async def get_events_by_entity(self, entity_id):
        return []


class TestSyncAuditLogger:
    """Tests for audit persistence."""

    @pytest.mark.asyncio
    async def test_events_are_persisted(self):
        """Test helper methods write typed events."""
        storage = LocalAuditStorage(InMemoryStore())
        audit = SyncAuditLogger(storage)

        await audit.log_enqueued("expense", "e1", "create", 3)
        await audit.log_sync_failed("expense", "e1", "create", 1, "timeout")

        events = await storage.get_events_by_entity("e1")
        assert [e.event_type for e in events] == [
            SyncEventType.ITEM_ENQUEUED,
            SyncEventType.ITEM_SYNC_FAILED,
        ]
        assert events[1].error_message == "timeout"

    @pytest.mark.asyncio
    async def test_storage_failure_never_raises(self):
        """Test a broken audit store is reported through the return value."""
        audit = SyncAuditLogger(BrokenAuditStorage())
        event = SyncEventBuilder.item_dead_lettered("budget", "b1", "update", 5, "auth")

        assert await audit.log(event) is False
        await audit.log_dead_lettered("budget", "b1", "update", 5, "auth")

    @pytest.mark.asyncio
    async def test_local_only_logger(self):
        """Test logging without storage succeeds."""
        assert await SyncAuditLogger().log(SyncEventBuilder.drain_started(2))


class TestSideEffects:
    """Tests for run_side_effect."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test a completed side effect reports ok."""
        async def action():
            return None

        outcome = await run_side_effect("noop", "e1", action())
        assert outcome.ok
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_failure_is_captured_and_audited(self):
        """Test a raising side effect becomes a failed outcome and an audit event."""
        storage = LocalAuditStorage(InMemoryStore())

        async def action():
            raise RuntimeError("budget missing")

        outcome = await run_side_effect("budget_spent", "e1", action(), SyncAuditLogger(storage))

        assert not outcome.ok
        assert outcome.error == "budget missing"
        events = await storage.get_recent_events()
        assert events[0].event_type == SyncEventType.SIDE_EFFECT_FAILED
        assert events[0].details["side_effect"] == "budget_spent"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
