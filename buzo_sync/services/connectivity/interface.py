"""
Connectivity Oracle Interface

The sync core only ever asks one question: is the backend reachable
right now? Implementations must not cache the answer; every call
re-checks the network.
"""

from abc import ABC, abstractmethod


class ConnectivityOracle(ABC):
    """Reports current online/offline state on demand."""

    @abstractmethod
    async def is_online(self) -> bool:
        """
        Check whether the device is connected AND the internet is reachable.

        Returns:
            True if remote calls are worth attempting
        """
        pass


class StaticConnectivityOracle(ConnectivityOracle):
    """
    Connectivity fixed by the caller.

    Used for offline-only sessions (no backend configured) and in tests.
    """

    def __init__(self, online: bool = False):
        self._online = online

    def set_online(self, online: bool) -> None:
        self._online = online

    async def is_online(self) -> bool:
        return self._online
