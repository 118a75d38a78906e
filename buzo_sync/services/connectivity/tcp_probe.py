"""
TCP Probe Connectivity

Reachability is decided by opening a TCP connection to a probe host.
A connected network interface alone is not enough: captive portals and
dead uplinks still report "connected".

Also provides a watcher that polls the oracle and fires a callback on
offline -> online transitions, which is what triggers a full sync when
the network comes back.
"""

import asyncio
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import structlog

from buzo_sync.config import get_settings
from buzo_sync.services.connectivity.interface import ConnectivityOracle


class TcpConnectivityOracle(ConnectivityOracle):
    """Probe a host:port with a short TCP connect."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings().connectivity
        self._host = host or settings.probe_host
        self._port = port or settings.probe_port
        self._timeout = timeout_seconds or settings.probe_timeout_seconds
        self._logger = structlog.get_logger()

    @classmethod
    def from_url(cls, url: str, timeout_seconds: Optional[float] = None) -> "TcpConnectivityOracle":
        """Probe the host of a service URL (e.g. the Supabase project URL)."""
        parsed = urlparse(url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return cls(host=parsed.hostname, port=port, timeout_seconds=timeout_seconds)

    async def is_online(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            self._logger.debug(
                "connectivity_probe_failed",
                host=self._host,
                port=self._port,
                error=str(e),
            )
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True


class ConnectivityWatcher:
    """
    Polls a connectivity oracle and reports transitions.

    `on_online` is awaited each time the oracle flips from offline to
    online. Errors raised by the callback are logged; the watcher keeps
    running.
    """

    def __init__(
        self,
        oracle: ConnectivityOracle,
        on_online: Callable[[], Awaitable[object]],
        poll_seconds: Optional[float] = None,
    ):
        self._oracle = oracle
        self._on_online = on_online
        self._poll_seconds = poll_seconds or get_settings().sync.connectivity_poll_seconds
        self._was_online: Optional[bool] = None
        self._task: Optional[asyncio.Task] = None
        self._logger = structlog.get_logger()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Poll once; returns the current state and fires the callback on a transition."""
        online = await self._oracle.is_online()
        went_online = online and self._was_online is False
        if online != self._was_online:
            self._logger.info("connectivity_changed", online=online)
        self._was_online = online

        if went_online:
            try:
                await self._on_online()
            except Exception as e:
                self._logger.error("connectivity_callback_failed", error=str(e))
        return online

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._poll_seconds)

    def start(self) -> None:
        """Start polling in a background task on the running loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
