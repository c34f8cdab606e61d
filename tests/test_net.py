"""Tests for TCP readiness probing."""

import asyncio
import socket
import time
from unittest.mock import AsyncMock, patch

import pytest

from monerokeeper.error_handling import COMPONENT_DAEMON, KeeperError, Kind, Op
from monerokeeper.net import port_open, probe_port, wait_for_port


class TestPortOpen:
    """Test the blocking probe."""

    def test_listening_port(self, listener):
        assert port_open(listener) is True

    def test_closed_port(self, free_port):
        assert port_open(free_port) is False

    @pytest.mark.asyncio
    async def test_async_probe(self, listener, free_port):
        assert await probe_port(listener) is True
        assert await probe_port(free_port) is False


class TestWaitForPort:
    """Test the bounded polling loop."""

    @pytest.mark.asyncio
    async def test_returns_when_port_is_open(self, listener):
        start = time.monotonic()

        await wait_for_port(listener, timeout=5, interval=1)

        assert time.monotonic() - start < 1

    @pytest.mark.asyncio
    async def test_timeout_names_port(self, free_port):
        with pytest.raises(KeeperError) as exc_info:
            await wait_for_port(
                free_port,
                timeout=0.3,
                interval=0.1,
                component=COMPONENT_DAEMON,
            )

        err = exc_info.value
        assert err.kind is Kind.TIMEOUT
        assert err.op is Op.PORT_BINDING
        assert err.component == COMPONENT_DAEMON
        assert str(free_port) in str(err)

    @pytest.mark.asyncio
    async def test_cancelled_before_first_call_never_blocks(self, free_port):
        """A task cancelled before it runs raises at once without probing."""
        with patch("monerokeeper.net.probe_port", new_callable=AsyncMock) as mock_probe:
            task = asyncio.create_task(wait_for_port(free_port, timeout=30))
            task.cancel()

            start = time.monotonic()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert time.monotonic() - start < 0.5
        mock_probe.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancellation_during_wait(self, free_port):
        """Cancellation latency is bounded by the poll interval."""
        task = asyncio.create_task(wait_for_port(free_port, timeout=30, interval=0.2))
        await asyncio.sleep(0.3)

        start = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert time.monotonic() - start < 0.5

    @pytest.mark.asyncio
    async def test_port_opening_within_one_interval(self, free_port):
        """A port that opens mid-interval is seen on the next poll."""
        interval = 0.5
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        def open_port():
            server.bind(("127.0.0.1", free_port))
            server.listen(8)

        loop = asyncio.get_running_loop()
        loop.call_later(0.1, open_port)
        try:
            start = time.monotonic()
            await wait_for_port(free_port, timeout=10, interval=interval)
            elapsed = time.monotonic() - start
        finally:
            server.close()

        assert elapsed < interval + 0.3

    @pytest.mark.asyncio
    async def test_abort_hook_stops_wait(self, free_port):
        with pytest.raises(KeeperError) as exc_info:
            await wait_for_port(
                free_port,
                timeout=30,
                interval=0.1,
                abort=lambda: "child exited with code 1",
            )

        assert exc_info.value.kind is Kind.PROCESS
        assert "child exited" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_abort_hook_returning_none_keeps_waiting(self, listener):
        calls = []

        def abort():
            calls.append(1)
            return None

        await wait_for_port(listener, timeout=5, abort=abort)

        assert calls
