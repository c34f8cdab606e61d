"""Test keeper process lifecycle management."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from monerokeeper.config import KeeperConfig
from monerokeeper.core.daemon import KeeperDaemon
from monerokeeper.error_handling import COMPONENT_DAEMON, E, KeeperError, Kind, Op


class TestKeeperDaemon:
    """Test KeeperDaemon functionality."""

    @pytest.fixture
    def config(self, tmp_path):
        """Create test configuration."""
        return KeeperConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs")

    @pytest.fixture
    def keeper_daemon(self, config):
        """Create daemon instance."""
        return KeeperDaemon(config)

    def test_daemon_initialization(self, keeper_daemon, config):
        """Test daemon initializes correctly."""
        assert keeper_daemon.config == config
        assert keeper_daemon.keeper is None

    @patch("monerokeeper.core.daemon.daemon")
    def test_start_daemon_creates_context(self, mock_daemon_module, keeper_daemon):
        """Test detached mode enters a daemon context."""
        mock_daemon_context = Mock()
        mock_daemon_context.__enter__ = Mock(return_value=mock_daemon_context)
        mock_daemon_context.__exit__ = Mock(return_value=None)
        mock_daemon_module.DaemonContext.return_value = mock_daemon_context

        with patch.object(keeper_daemon, "_run", return_value=0) as mock_run:
            assert keeper_daemon.start_daemon() == 0

        mock_daemon_module.DaemonContext.assert_called_once()
        mock_daemon_context.__enter__.assert_called_once()
        mock_run.assert_called_once_with(keeper_daemon.config.log_dir / "monerokeeper.log")

    def test_start_foreground(self, keeper_daemon):
        """Test foreground mode runs without daemon context."""
        with patch.object(keeper_daemon, "_run", return_value=0) as mock_run:
            keeper_daemon.start_foreground()

        mock_run.assert_called_once_with(None)

    @patch("monerokeeper.core.daemon.ProcessLock")
    def test_run_refuses_second_instance(self, mock_lock_cls, keeper_daemon):
        mock_lock_cls.for_config.return_value.acquire.return_value = False

        assert keeper_daemon._run(None) == 1

    @patch("monerokeeper.core.daemon.ProcessLock")
    def test_run_releases_lock(self, mock_lock_cls, keeper_daemon):
        lock = mock_lock_cls.for_config.return_value
        lock.acquire.return_value = True

        with patch.object(keeper_daemon, "serve", new=AsyncMock(return_value=0)):
            assert keeper_daemon._run(None) == 0

        lock.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_without_keeper(self, keeper_daemon):
        assert await keeper_daemon.stop() is True

    @pytest.mark.asyncio
    async def test_stop_reports_shutdown_error(self, keeper_daemon):
        keeper_daemon.keeper = Mock(
            shutdown=AsyncMock(side_effect=E(Op.SHUTDOWN, COMPONENT_DAEMON, Kind.TIMEOUT)),
        )

        assert await keeper_daemon.stop() is False


class TestServe:
    """Test the signal-driven run loop."""

    @pytest.fixture
    def keeper_daemon(self, tmp_path):
        return KeeperDaemon(KeeperConfig(data_dir=tmp_path))

    @pytest.mark.asyncio
    async def test_runs_until_stop_requested(self, keeper_daemon):
        with patch("monerokeeper.core.daemon.Keeper") as mock_keeper_cls:
            keeper = mock_keeper_cls.return_value
            keeper.start = AsyncMock(side_effect=lambda: keeper_daemon.request_stop())
            keeper.shutdown = AsyncMock()

            assert await keeper_daemon.serve() == 0

        keeper.start.assert_awaited_once()
        keeper.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_startup_failure_cleans_up_and_raises(self, keeper_daemon):
        failure = E(Op.PORT_BINDING, COMPONENT_DAEMON, Kind.TIMEOUT)
        with patch("monerokeeper.core.daemon.Keeper") as mock_keeper_cls:
            keeper = mock_keeper_cls.return_value
            keeper.start = AsyncMock(side_effect=failure)
            keeper.shutdown = AsyncMock()

            with pytest.raises(KeeperError) as exc_info:
                await keeper_daemon.serve()

        assert exc_info.value is failure
        keeper.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_during_startup_cancels_start(self, keeper_daemon):
        started = asyncio.Event()
        cancelled = []

        async def slow_start():
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        with patch("monerokeeper.core.daemon.Keeper") as mock_keeper_cls:
            keeper = mock_keeper_cls.return_value
            keeper.start = slow_start
            keeper.shutdown = AsyncMock()

            serve_task = asyncio.create_task(keeper_daemon.serve())
            await started.wait()
            keeper_daemon.request_stop()
            exit_code = await asyncio.wait_for(serve_task, 5)

        assert exit_code == 0
        assert cancelled == [True]
        keeper.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_failure_exit_code(self, keeper_daemon):
        with patch("monerokeeper.core.daemon.Keeper") as mock_keeper_cls:
            keeper = mock_keeper_cls.return_value
            keeper.start = AsyncMock(side_effect=lambda: keeper_daemon.request_stop())
            keeper.shutdown = AsyncMock(side_effect=E(Op.SHUTDOWN, COMPONENT_DAEMON, Kind.PROCESS))

            assert await keeper_daemon.serve() == 1
