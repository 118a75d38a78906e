"""
Data Models Package

This package contains all Pydantic models used by Buzo Sync.
All data flowing through the sync core must conform to these schemas.
"""

from buzo_sync.models.entities import (
    ENTITY_MODELS,
    Budget,
    ContributionRecord,
    ContributionSource,
    Entity,
    EntityKind,
    EntityOrigin,
    Expense,
    Milestone,
    PaymentMethod,
    SavingsGoal,
    new_entity_id,
    utc_now,
)
from buzo_sync.models.sync import (
    SyncOperation,
    SyncQueueItem,
    SyncReport,
    SyncStatus,
)
from buzo_sync.models.analytics import (
    BudgetStatistics,
    BudgetUtilization,
    ExpenseFilter,
    ExpenseStatistics,
    SavingsAnalytics,
)
from buzo_sync.models.audit import (
    AuditSeverity,
    SyncEvent,
    SyncEventBuilder,
    SyncEventType,
)

__all__ = [
    # Entity models
    "ENTITY_MODELS",
    "Budget",
    "ContributionRecord",
    "ContributionSource",
    "Entity",
    "EntityKind",
    "EntityOrigin",
    "Expense",
    "Milestone",
    "PaymentMethod",
    "SavingsGoal",
    "new_entity_id",
    "utc_now",
    # Sync models
    "SyncOperation",
    "SyncQueueItem",
    "SyncReport",
    "SyncStatus",
    # Analytics models
    "BudgetStatistics",
    "BudgetUtilization",
    "ExpenseFilter",
    "ExpenseStatistics",
    "SavingsAnalytics",
    # Audit models
    "AuditSeverity",
    "SyncEvent",
    "SyncEventBuilder",
    "SyncEventType",
]
