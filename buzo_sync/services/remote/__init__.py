"""
Remote Gateway Package

Abstract CRUD gateway per entity table, its error taxonomy, row mappers,
and the Supabase implementation.
"""

from buzo_sync.services.remote.interface import (
    AuthRequiredError,
    DuplicateKeyError,
    RemoteEntityGateway,
    RemoteError,
    RemoteNotFoundError,
    UnreachableError,
    classify_remote_error,
)
from buzo_sync.services.remote.mappers import (
    BudgetRowMapper,
    EntityRowMapper,
    ExpenseRowMapper,
    SavingsGoalRowMapper,
)
from buzo_sync.services.remote.supabase_gateway import (
    SavingsGoalGateway,
    SupabaseClient,
    SupabaseEntityGateway,
    SupabaseIdentityProvider,
    create_supabase_gateways,
)

__all__ = [
    # Interface
    "RemoteEntityGateway",
    # Exceptions
    "AuthRequiredError",
    "DuplicateKeyError",
    "RemoteError",
    "RemoteNotFoundError",
    "UnreachableError",
    "classify_remote_error",
    # Mappers
    "BudgetRowMapper",
    "EntityRowMapper",
    "ExpenseRowMapper",
    "SavingsGoalRowMapper",
    # Supabase implementation
    "SavingsGoalGateway",
    "SupabaseClient",
    "SupabaseEntityGateway",
    "SupabaseIdentityProvider",
    "create_supabase_gateways",
]
