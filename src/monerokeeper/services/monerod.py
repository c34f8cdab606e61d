"""Supervisor for the Monero daemon (monerod)."""

import logging
from dataclasses import dataclass, field

from ..error_handling import COMPONENT_DAEMON
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DaemonEndpoint:
    """What a wallet needs to reach the daemon."""

    port: int
    username: str
    password: str = field(repr=False)

    @property
    def address(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def login(self) -> str:
        return f"{self.username}:{self.password}"


class MoneroDaemon(ProcessSupervisor):
    """Runs monerod, or attaches to one already serving the RPC port."""

    component = COMPONENT_DAEMON

    def build_args(self) -> list[str]:
        args = [
            "--data-dir", str(self.service.directory),
            "--rpc-bind-port", str(self.rpc_port),
            "--rpc-login", self.credentials.login,
            "--non-interactive",
        ]
        if self.service.testnet:
            args.append("--testnet")
        return args

    def endpoint(self) -> DaemonEndpoint:
        return DaemonEndpoint(
            port=self.rpc_port,
            username=self.rpc_user,
            password=self.rpc_pass,
        )
