"""Ordered startup and shutdown of monerod and monero-wallet-rpc."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..config import KeeperConfig
from ..locate import locate
from ..services.monerod import MoneroDaemon
from ..services.supervisor import NO_PID
from ..services.wallet_rpc import WalletRPC

logger = logging.getLogger(__name__)


class Keeper:
    """Runs the wallet RPC service on top of a daemon.

    The daemon is started first and the wallet only once the daemon answers
    on its RPC port. Shutdown runs in the opposite order.
    """

    def __init__(
        self,
        config: KeeperConfig,
        *,
        locator: Callable[[str], Path] = locate,
    ):
        self.config = config
        self.locator = locator
        self.daemon = MoneroDaemon(
            config.daemon_service(),
            config.settings(),
            locator=locator,
            log_dir=config.log_dir,
        )
        self.wallet: WalletRPC | None = None

    @classmethod
    async def create(
        cls,
        config: KeeperConfig,
        *,
        locator: Callable[[str], Path] = locate,
    ) -> "Keeper":
        """Build a keeper and start both services."""
        keeper = cls(config, locator=locator)
        await keeper.start()
        return keeper

    async def start(self) -> None:
        """Start the daemon, then the wallet.

        A daemon failure is raised unchanged and the wallet is never tried.
        A wallet failure leaves the daemon running; callers that own the
        daemon decide whether to stop it.
        """
        logger.info("Starting monerod on port %s", self.config.daemon_port)
        await self.daemon.start()

        if self.wallet is None:
            self.wallet = WalletRPC(
                self.config.wallet_service(),
                self.daemon.endpoint(),
                self.config.settings(),
                locator=self.locator,
                log_dir=self.config.log_dir,
            )

        logger.info("Starting monero-wallet-rpc on port %s", self.config.wallet_port)
        await self.wallet.start()
        logger.info(
            "Services running: monerod PID %s, monero-wallet-rpc PID %s",
            self.daemon_pid,
            self.wallet_pid,
        )

    async def shutdown(self) -> None:
        """Stop the wallet, then the daemon.

        A wallet failure is raised immediately and the daemon is left alone.
        """
        if self.wallet is not None:
            await self.wallet.shutdown()
        await self.daemon.shutdown()
        logger.info("All services stopped")

    @property
    def daemon_pid(self) -> str:
        return self.daemon.pid

    @property
    def wallet_pid(self) -> str:
        return self.wallet.pid if self.wallet is not None else NO_PID

    def status(self) -> list[dict[str, Any]]:
        """Snapshot of both services for reporting."""
        rows = [_describe("monerod", self.daemon)]
        if self.wallet is not None:
            rows.append(_describe("monero-wallet-rpc", self.wallet))
        return rows


def _describe(name: str, supervisor: MoneroDaemon | WalletRPC) -> dict[str, Any]:
    return {
        "name": name,
        "port": supervisor.rpc_port,
        "pid": supervisor.pid,
        "state": supervisor.state.value,
        "user": supervisor.rpc_user,
    }
