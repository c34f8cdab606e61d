"""Run the keeper until a termination signal arrives."""

import asyncio
import contextlib
import logging
import signal
from pathlib import Path

import daemon

from ..config import KeeperConfig
from ..error_handling import KeeperError
from ..process_lock import ProcessLock
from .keeper import Keeper

logger = logging.getLogger(__name__)

# Overall bound on stopping both services after a signal
SHUTDOWN_GRACE = 30.0


class KeeperDaemon:
    """Manages the keeper process lifecycle."""

    def __init__(self, config: KeeperConfig):
        self.config = config
        self.keeper: Keeper | None = None
        self.lock: ProcessLock | None = None
        self._stop: asyncio.Event | None = None

    def start_daemon(self) -> int:
        """Detach from the terminal and run in the background."""
        self.config.ensure_directories()
        log_dir = self.config.log_dir or self.config.data_dir
        log_file_path = log_dir / "monerokeeper.log"

        logger.info("Starting monerokeeper in the background")
        logger.info(f"Log file: {log_file_path}")

        daemon_context = daemon.DaemonContext(
            working_directory=Path.cwd(),
            umask=0o002,
        )

        with daemon_context:
            return self._run(log_file_path)

    def start_foreground(self) -> int:
        """Run attached to the terminal, logging where the CLI configured."""
        self.config.ensure_directories()
        return self._run(None)

    def _run(self, log_file_path: Path | None) -> int:
        if log_file_path:
            self._setup_daemon_logging(log_file_path)

        self.lock = ProcessLock.for_config(self.config)
        if not self.lock.acquire():
            logger.error("Failed to acquire process lock - another keeper may be running")
            return 1

        try:
            return asyncio.run(self.serve())
        finally:
            self.lock.release()

    async def serve(self) -> int:
        """Start both services, wait for SIGINT/SIGTERM, then stop them."""
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._on_signal, signum)

        try:
            self.keeper = Keeper(self.config)
            start_task = asyncio.create_task(self.keeper.start())
            stop_task = asyncio.create_task(self._stop.wait())
            await asyncio.wait({start_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            if not start_task.done():
                logger.info("Stop requested during startup")
                start_task.cancel()
                with contextlib.suppress(asyncio.CancelledError, KeeperError):
                    await start_task
            elif start_task.exception() is not None:
                stop_task.cancel()
                error = start_task.exception()
                logger.error("Startup failed: %s", error)
                await self.stop()
                raise error
            else:
                logger.info(
                    "monerod PID %s, monero-wallet-rpc PID %s",
                    self.keeper.daemon_pid,
                    self.keeper.wallet_pid,
                )
                await stop_task
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)

        return 0 if await self.stop() else 1

    def request_stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    def _on_signal(self, signum: int) -> None:
        logger.info("Received signal %s, initiating shutdown", signal.Signals(signum).name)
        self.request_stop()

    async def stop(self) -> bool:
        """Stop both services. Returns False if anything was left running."""
        if self.keeper is None:
            return True
        try:
            await asyncio.wait_for(self.keeper.shutdown(), SHUTDOWN_GRACE)
        except KeeperError as e:
            logger.error("Error during shutdown: %s", e)
            return False
        except asyncio.TimeoutError:
            logger.error("Shutdown did not finish within %ss", SHUTDOWN_GRACE)
            return False
        logger.info("Shutdown complete")
        return True

    def _setup_daemon_logging(self, log_file_path: Path) -> None:
        """Set up logging for daemon mode."""
        logger = logging.getLogger()
        logger.setLevel(logging.INFO)

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setLevel(logging.INFO)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
