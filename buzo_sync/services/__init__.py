"""Services package: local storage, connectivity, remote backend and collaborators."""

from buzo_sync.services.connectivity import (
    ConnectivityOracle,
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
from buzo_sync.services.storage import (
    InMemoryStore,
    JsonFileStore,
    LocalStoreInterface,
    StorageError,
)

__all__ = [
    # Connectivity
    "ConnectivityOracle",
    "StaticConnectivityOracle",
    "TcpConnectivityOracle",
    # Collaborators
    "InsightGenerator",
    "LoggingNotifier",
    "Notifier",
    "NullInsightGenerator",
    "StaticUserIdentityProvider",
    "UserIdentityProvider",
    # Storage
    "InMemoryStore",
    "JsonFileStore",
    "LocalStoreInterface",
    "StorageError",
]
