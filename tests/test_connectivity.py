"""
Tests for connectivity detection and the reconnect trigger.
"""

import asyncio

import pytest

from buzo_sync.services.connectivity import (
    ConnectivityWatcher,
    StaticConnectivityOracle,
    TcpConnectivityOracle,
)


class TestTcpConnectivityOracle:
    """Tests for the TCP probe against a local listener."""

    @pytest.mark.asyncio
    async def test_reachable_host(self):
        """Test a listening port reports online."""
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            assert await TcpConnectivityOracle("127.0.0.1", port, timeout_seconds=1.0).is_online()
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        """Test a closed port reports offline instead of raising."""
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        assert not await TcpConnectivityOracle("127.0.0.1", port, timeout_seconds=1.0).is_online()

    def test_from_url(self):
        """Test the probe target is derived from a service URL."""
        oracle = TcpConnectivityOracle.from_url("https://abc.supabase.co")
        assert oracle._host == "abc.supabase.co"
        assert oracle._port == 443


class TestConnectivityWatcher:
    """Tests for offline -> online transitions."""

    @pytest.mark.asyncio
    async def test_fires_on_reconnect_only(self):
        """Test the callback runs once per offline -> online transition."""
        oracle = StaticConnectivityOracle(online=False)
        calls = []

        async def on_online():
            calls.append("sync")

        watcher = ConnectivityWatcher(oracle, on_online, poll_seconds=0.01)
        await watcher.check_once()
        oracle.set_online(True)
        await watcher.check_once()
        await watcher.check_once()

        assert calls == ["sync"]

    @pytest.mark.asyncio
    async def test_initially_online_does_not_fire(self):
        """Test the first observation is not a transition."""
        calls = []

        async def on_online():
            calls.append("sync")

        watcher = ConnectivityWatcher(StaticConnectivityOracle(online=True), on_online, poll_seconds=0.01)
        assert await watcher.check_once()
        assert calls == []

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self):
        """Test a failing callback does not break the watcher."""
        oracle = StaticConnectivityOracle(online=False)

        async def on_online():
            raise RuntimeError("sync exploded")

        watcher = ConnectivityWatcher(oracle, on_online, poll_seconds=0.01)
        await watcher.check_once()
        oracle.set_online(True)
        assert await watcher.check_once()

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test the background task lifecycle."""
        oracle = StaticConnectivityOracle(online=False)
        fired = asyncio.Event()

        async def on_online():
            fired.set()

        watcher = ConnectivityWatcher(oracle, on_online, poll_seconds=0.01)
        watcher.start()
        assert watcher.is_running
        await asyncio.sleep(0.02)
        oracle.set_online(True)
        await asyncio.wait_for(fired.wait(), timeout=1.0)

        await watcher.stop()
        assert not watcher.is_running


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
