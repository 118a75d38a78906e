"""
Shared fixtures for the sync core tests.

No real network calls: the backend is an in-memory gateway per entity
kind, connectivity is a switch, and notifications are recorded.
"""

import asyncio
from typing import Any, Optional

import pytest

from buzo_sync.config import SyncSettings
from buzo_sync.models.entities import ENTITY_MODELS, Entity, EntityKind, EntityOrigin
from buzo_sync.orchestrator import create_app_components
from buzo_sync.services.connectivity import StaticConnectivityOracle
from buzo_sync.services.integrations import Notifier, StaticUserIdentityProvider
from buzo_sync.services.remote import (
    DuplicateKeyError,
    RemoteEntityGateway,
    RemoteNotFoundError,
)
from buzo_sync.services.storage import InMemoryStore
from buzo_sync.sync import SyncQueue


TEST_USER_ID = "user-123"


class FakeGateway(RemoteEntityGateway):
    """
    In-memory backend table.

    Set `fail_with` to make every write raise, or `delay` to make writes
    suspend (for concurrency tests).
    """

    def __init__(self, kind: EntityKind, table: Optional[str] = None):
        self._kind = kind
        self._table = table or f"{kind.value}s"
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None
        self.delay: float = 0.0

    @property
    def kind(self) -> EntityKind:
        return self._kind

    @property
    def table(self) -> str:
        return self._table

    def _to_entity(self, row: dict[str, Any]) -> Entity:
        return ENTITY_MODELS[self._kind].model_validate({**row, "origin": EntityOrigin.REMOTE.value})

    async def _before_write(self, operation: str, entity_id: str) -> None:
        self.calls.append((operation, entity_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def seed(self, entity: Entity) -> None:
        """Put a row directly into the table, bypassing call recording."""
        self.rows[entity.id] = entity.model_copy(update={"origin": EntityOrigin.REMOTE}).to_storage_dict()

    def calls_for(self, operation: str) -> list[str]:
        return [entity_id for op, entity_id in self.calls if op == operation]

    async def create(self, entity: Entity) -> Entity:
        await self._before_write("create", entity.id)
        if entity.id in self.rows:
            raise DuplicateKeyError("duplicate key value violates unique constraint", "23505")
        self.seed(entity)
        return self._to_entity(self.rows[entity.id])

    async def update(self, entity_id: str, changes: dict[str, Any]) -> Entity:
        await self._before_write("update", entity_id)
        if entity_id not in self.rows:
            raise RemoteNotFoundError(f"no rows for {entity_id}", "PGRST116")
        self.rows[entity_id] = {**self.rows[entity_id], **changes}
        return self._to_entity(self.rows[entity_id])

    async def delete(self, entity_id: str) -> bool:
        await self._before_write("delete", entity_id)
        if self.rows.pop(entity_id, None) is None:
            raise RemoteNotFoundError(f"no rows for {entity_id}", "PGRST116")
        return True

    async def get_by_id(self, entity_id: str) -> Optional[Entity]:
        row = self.rows.get(entity_id)
        return self._to_entity(row) if row is not None else None

    async def list(self, filters: Optional[dict[str, Any]] = None) -> list[Entity]:
        return [self._to_entity(row) for row in self.rows.values()]


class RecordingNotifier(Notifier):
    """Keeps every notification call for assertions."""

    def __init__(self):
        self.budget_alerts: list[tuple[str, str, float]] = []
        self.progress_alerts: list[tuple[str, float]] = []
        self.milestone_alerts: list[tuple[str, str, str]] = []

    async def send_budget_alert(self, budget_id: str, alert_type: str, remaining_percentage: float) -> None:
        self.budget_alerts.append((budget_id, alert_type, remaining_percentage))

    async def send_savings_progress_alert(self, goal_id: str, progress: float) -> None:
        self.progress_alerts.append((goal_id, progress))

    async def send_milestone_alert(self, goal_id: str, milestone_id: str, title: str) -> None:
        self.milestone_alerts.append((goal_id, milestone_id, title))


@pytest.fixture
def sync_settings():
    """Default tuning, independent of the environment."""
    return SyncSettings(max_retry_attempts=5, stale_sync_seconds=300)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def queue(store, sync_settings):
    return SyncQueue(store, sync_settings)


@pytest.fixture
def connectivity():
    return StaticConnectivityOracle(online=True)


@pytest.fixture
def identity():
    return StaticUserIdentityProvider(TEST_USER_ID)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateways():
    return {kind: FakeGateway(kind) for kind in EntityKind}


@pytest.fixture
def app(store, gateways, connectivity, identity, notifier):
    """Fully wired sync core over the fakes."""
    return create_app_components(
        store=store,
        gateways=gateways,
        connectivity=connectivity,
        identity=identity,
        notifier=notifier,
    )
