"""Supervisor for the Monero wallet RPC service (monero-wallet-rpc)."""

import logging
from collections.abc import Callable
from pathlib import Path

from ..config import ServiceConfig, SupervisorSettings
from ..error_handling import COMPONENT_WALLET_RPC, E, Kind, Op
from ..locate import locate
from ..net import probe_port
from .monerod import DaemonEndpoint
from .supervisor import ProcessState, ProcessSupervisor

logger = logging.getLogger(__name__)

# The wallet reports the same lifecycle as any other supervised process
WalletState = ProcessState


class WalletRPC(ProcessSupervisor):
    """Runs monero-wallet-rpc against a daemon endpoint."""

    component = COMPONENT_WALLET_RPC

    def __init__(
        self,
        service: ServiceConfig,
        daemon: DaemonEndpoint,
        settings: SupervisorSettings | None = None,
        *,
        locator: Callable[[str], Path] = locate,
        log_dir: Path | None = None,
    ):
        super().__init__(service, settings, locator=locator, log_dir=log_dir)
        self.daemon = daemon

    def validate(self) -> None:
        if self.service.directory is None or not str(self.service.directory):
            raise E(
                Op.VALIDATE_CONFIG,
                self.component,
                Kind.CONFIG,
                ValueError("wallet directory cannot be empty"),
            )
        super().validate()

    def build_args(self) -> list[str]:
        args = [
            "--wallet-dir", str(self.service.directory),
            "--rpc-bind-port", str(self.rpc_port),
            "--daemon-address", self.daemon.address,
            "--daemon-login", self.daemon.login,
            "--rpc-login", self.credentials.login,
        ]
        if self.service.testnet:
            args.append("--testnet")
        return args

    def _redacted(self, args: list[str]) -> list[str]:
        return ["***" if a == self.daemon.login else a for a in super()._redacted(args)]

    async def check_health(self) -> None:
        """Confirm the RPC port still accepts connections."""
        if not await probe_port(self.rpc_port, timeout=self.settings.connect_timeout):
            raise E(
                Op.HEALTH_CHECK,
                self.component,
                Kind.NETWORK,
                ConnectionError(f"wallet-rpc is not responding on port {self.rpc_port}"),
            )
