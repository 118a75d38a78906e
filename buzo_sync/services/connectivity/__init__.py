"""Connectivity detection package."""

from buzo_sync.services.connectivity.interface import (
    ConnectivityOracle,
    StaticConnectivityOracle,
)
from buzo_sync.services.connectivity.tcp_probe import (
    ConnectivityWatcher,
    TcpConnectivityOracle,
)

__all__ = [
    "ConnectivityOracle",
    "ConnectivityWatcher",
    "StaticConnectivityOracle",
    "TcpConnectivityOracle",
]
