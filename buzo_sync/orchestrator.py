"""
Application Wiring for Buzo Sync

This module ties the sync core together:
1. Local store, sync queue and audit log
2. Remote gateways (Supabase) when the backend is configured
3. Entity services for expenses, budgets and savings goals
4. The sync processor, triggered at startup, on reconnect and periodically

DESIGN DECISION: The app runs without a backend.
If Supabase is not configured every mutation lands locally and in the
queue; nothing is lost, it simply waits until a backend is configured.

DESIGN DECISION: Startup clears the persisted syncing flag.
A process that just started cannot have a drain in flight, so a flag
left set by a crash is dropped immediately instead of waiting for the
stale timeout.
"""

import asyncio
from typing import Optional

import structlog

from buzo_sync.audit import SyncAuditLogger, configure_logging
from buzo_sync.config import SyncSettings, get_settings
from buzo_sync.entities import BudgetService, ExpenseService, SavingsService
from buzo_sync.models.entities import EntityKind
from buzo_sync.services.connectivity import (
    ConnectivityOracle,
    ConnectivityWatcher,
    StaticConnectivityOracle,
    TcpConnectivityOracle,
)
from buzo_sync.services.integrations import (
    InsightGenerator,
    LoggingNotifier,
    Notifier,
    NullInsightGenerator,
    StaticUserIdentityProvider,
    UserIdentityProvider,
)
from buzo_sync.services.remote import (
    RemoteEntityGateway,
    SupabaseClient,
    SupabaseIdentityProvider,
    create_supabase_gateways,
)
from buzo_sync.services.storage import (
    JsonFileStore,
    LocalAuditStorage,
    LocalStoreInterface,
)
from buzo_sync.sync import SyncProcessor, SyncQueue


class SyncApplication:
    """
    The running sync core.

    Holds the entity services the UI mutates through, and owns the
    background tasks that drain the queue.
    """

    def __init__(
        self,
        expenses: ExpenseService,
        budgets: BudgetService,
        savings: SavingsService,
        queue: SyncQueue,
        processor: SyncProcessor,
        connectivity: ConnectivityOracle,
        audit_logger: SyncAuditLogger,
        settings: Optional[SyncSettings] = None,
    ):
        self.expenses = expenses
        self.budgets = budgets
        self.savings = savings
        self.queue = queue
        self.processor = processor
        self.connectivity = connectivity
        self.audit_logger = audit_logger
        self._settings = settings or get_settings().sync
        self._watcher: Optional[ConnectivityWatcher] = None
        self._stop: Optional[asyncio.Event] = None
        self._periodic: Optional[asyncio.Task] = None
        self._logger = structlog.get_logger()

    async def start(self, background: bool = True) -> None:
        """
        Prepare the sync status and (optionally) start background syncing.

        Args:
            background: Start the connectivity watcher and the periodic sync
        """
        status = await self.queue.init_status()
        if status.is_syncing:
            self._logger.warning("startup_sync_flag_cleared", last_sync_attempt=str(status.last_sync_attempt))
            await self.queue.update_status(is_syncing=False)

        self._logger.info(
            "sync_core_started",
            pending=status.pending_count,
            dead_letters=status.dead_letter_count,
        )
        if not background:
            return

        self._watcher = ConnectivityWatcher(
            self.connectivity,
            self.processor.full_sync,
            self._settings.connectivity_poll_seconds,
        )
        self._watcher.start()

        self._stop = asyncio.Event()
        self._periodic = asyncio.get_running_loop().create_task(
            self.processor.run_periodically(self._stop)
        )

    async def sync_now(self):
        """Run a full sync immediately (pull-to-refresh)."""
        return await self.processor.full_sync()

    async def shutdown(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        if self._stop is not None:
            self._stop.set()
        if self._periodic is not None:
            await self._periodic
            self._periodic = None
        self._logger.info("sync_core_stopped")


def create_app_components(
    use_remote: bool = True,
    store: Optional[LocalStoreInterface] = None,
    gateways: Optional[dict[EntityKind, RemoteEntityGateway]] = None,
    connectivity: Optional[ConnectivityOracle] = None,
    identity: Optional[UserIdentityProvider] = None,
    notifier: Optional[Notifier] = None,
    insights: Optional[InsightGenerator] = None,
    user_id: Optional[str] = None,
) -> SyncApplication:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to connect the Supabase backend.
                    Set to False to run fully offline.
        store: Local store; defaults to JSON files in the data directory
        gateways: Remote gateways per entity kind (overrides Supabase)
        connectivity: Connectivity oracle (overrides the TCP probe)
        identity: Current-user provider (overrides the Supabase session)
        notifier: Notification sink; defaults to log-only
        insights: Insight hook; defaults to a no-op
        user_id: Fixed user id for offline sessions without an identity provider

    Returns:
        A SyncApplication; call `start()` on it inside the event loop
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    logger = structlog.get_logger()
    sync_settings = settings.sync

    store = store or JsonFileStore()
    audit_logger = SyncAuditLogger(LocalAuditStorage(store, sync_settings.audit_log_max_events))
    queue = SyncQueue(store, sync_settings, audit_logger)

    if gateways is None and use_remote:
        try:
            client = SupabaseClient()
            gateways = create_supabase_gateways(client)
            identity = identity or SupabaseIdentityProvider(client)
            connectivity = connectivity or TcpConnectivityOracle.from_url(client.settings.url)
        except Exception as e:
            # Backend not configured - continue offline
            logger.warning("remote_not_configured", error=str(e))
            gateways = None

    gateways = gateways or {}
    connectivity = connectivity or StaticConnectivityOracle(online=bool(gateways))
    identity = identity or StaticUserIdentityProvider(user_id)
    notifier = notifier or LoggingNotifier()
    insights = insights or NullInsightGenerator()

    common = dict(
        store=store,
        queue=queue,
        identity=identity,
        connectivity=connectivity,
        notifier=notifier,
        settings=sync_settings,
        audit_logger=audit_logger,
    )
    budgets = BudgetService(gateway=gateways.get(EntityKind.BUDGET), **common)
    savings = SavingsService(gateway=gateways.get(EntityKind.SAVINGS_GOAL), **common)
    expenses = ExpenseService(
        gateway=gateways.get(EntityKind.EXPENSE),
        budgets=budgets,
        savings=savings,
        insights=insights,
        **common,
    )
    budgets.attach_expense_service(expenses)

    processor = SyncProcessor(
        queue,
        gateways,
        store,
        connectivity=connectivity,
        settings=sync_settings,
        audit_logger=audit_logger,
    )

    return SyncApplication(
        expenses=expenses,
        budgets=budgets,
        savings=savings,
        queue=queue,
        processor=processor,
        connectivity=connectivity,
        audit_logger=audit_logger,
        settings=sync_settings,
    )
