"""Configuration management for monerokeeper."""

from pathlib import Path

import tomli
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_DAEMON_PORT = 18081
DEFAULT_WALLET_PORT = 18083
TESTNET_DAEMON_PORT = 28081
TESTNET_WALLET_PORT = 28083
DEFAULT_STARTUP_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 10.0

MAX_PORT = 65535


def _expand(v: Path | str | None) -> Path | None:
    if v is None or v == "":
        return None
    return Path(v).expanduser().resolve()


def _check_port(v: int) -> int:
    if not 0 < v <= MAX_PORT:
        msg = f"port must be between 1 and {MAX_PORT}, got {v}"
        raise ValueError(msg)
    return v


class ServiceConfig(BaseModel):
    """Immutable per-service input to a supervisor."""

    model_config = ConfigDict(frozen=True)

    executable: str
    directory: Path | None = None
    port: int
    testnet: bool = False
    rpc_user: str | None = None
    rpc_pass: str | None = None


class SupervisorSettings(BaseModel):
    """Timing and escalation policy shared by both supervisors."""

    model_config = ConfigDict(frozen=True)

    startup_timeout: float = Field(default=DEFAULT_STARTUP_TIMEOUT, gt=0)
    shutdown_timeout: float = Field(default=DEFAULT_SHUTDOWN_TIMEOUT, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)
    connect_timeout: float = Field(default=1.0, gt=0)
    kill_on_shutdown_timeout: bool = False
    terminate_on_failed_start: bool = False


class KeeperConfig(BaseModel):
    """Main configuration for monerokeeper."""

    # Paths
    data_dir: Path = Field(default=Path("~/.bitmonero"))
    wallet_dir: Path | None = None  # defaults to data_dir
    log_dir: Path | None = None  # child output is discarded when unset

    # Ports
    daemon_port: int = Field(default=DEFAULT_DAEMON_PORT)
    wallet_port: int = Field(default=DEFAULT_WALLET_PORT)
    testnet: bool = False

    # Explicit credentials; generated per run when unset
    daemon_rpc_user: str | None = None
    daemon_rpc_pass: str | None = None
    wallet_rpc_user: str | None = None
    wallet_rpc_pass: str | None = None

    # Executables
    daemon_binary: str = Field(default="monerod")
    wallet_binary: str = Field(default="monero-wallet-rpc")

    # Timeout Settings (seconds)
    startup_timeout: float = Field(default=DEFAULT_STARTUP_TIMEOUT, gt=0)
    shutdown_timeout: float = Field(default=DEFAULT_SHUTDOWN_TIMEOUT, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)
    connect_timeout: float = Field(default=1.0, gt=0)

    # Escalation policy
    kill_on_shutdown_timeout: bool = False
    terminate_on_failed_start: bool = False

    @field_validator("data_dir", "wallet_dir", "log_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Path | str | None) -> Path | None:
        """Expand user home directory in paths."""
        return _expand(v)

    @field_validator("daemon_port", "wallet_port")
    @classmethod
    def valid_port(cls, v: int) -> int:
        """Ports must fit in 1..65535."""
        return _check_port(v)

    @model_validator(mode="after")
    def distinct_ports(self) -> "KeeperConfig":
        """The daemon and the wallet cannot share a port."""
        if self.daemon_port == self.wallet_port:
            msg = f"daemon_port and wallet_port are both {self.daemon_port}"
            raise ValueError(msg)
        return self

    @property
    def effective_wallet_dir(self) -> Path:
        return self.wallet_dir or self.data_dir

    def daemon_service(self) -> ServiceConfig:
        return ServiceConfig(
            executable=self.daemon_binary,
            directory=self.data_dir,
            port=self.daemon_port,
            testnet=self.testnet,
            rpc_user=self.daemon_rpc_user,
            rpc_pass=self.daemon_rpc_pass,
        )

    def wallet_service(self) -> ServiceConfig:
        return ServiceConfig(
            executable=self.wallet_binary,
            directory=self.effective_wallet_dir,
            port=self.wallet_port,
            testnet=self.testnet,
            rpc_user=self.wallet_rpc_user,
            rpc_pass=self.wallet_rpc_pass,
        )

    def settings(self) -> SupervisorSettings:
        return SupervisorSettings(
            startup_timeout=self.startup_timeout,
            shutdown_timeout=self.shutdown_timeout,
            poll_interval=self.poll_interval,
            connect_timeout=self.connect_timeout,
            kill_on_shutdown_timeout=self.kill_on_shutdown_timeout,
            terminate_on_failed_start=self.terminate_on_failed_start,
        )

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.data_dir, self.effective_wallet_dir, self.log_dir]:
            if dir_path is not None:
                dir_path.mkdir(parents=True, exist_ok=True)


def recommend_config(data_dir: Path | str, *, testnet: bool = False) -> KeeperConfig:
    """Defaults rooted at a single data directory."""
    data_dir = Path(data_dir)
    return KeeperConfig(
        data_dir=data_dir,
        wallet_dir=data_dir / "wallets",
        log_dir=data_dir / "logs",
        daemon_port=TESTNET_DAEMON_PORT if testnet else DEFAULT_DAEMON_PORT,
        wallet_port=TESTNET_WALLET_PORT if testnet else DEFAULT_WALLET_PORT,
        testnet=testnet,
    )


def load_config(config_path: Path | None = None) -> KeeperConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        possible_paths = [
            Path.home() / ".config" / "monerokeeper" / "config.toml",
            Path.cwd() / "monerokeeper.toml",
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return KeeperConfig(**config_data)
    return KeeperConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# monerokeeper configuration
# ==========================

# Directories
data_dir = "~/.bitmonero"                 # Blockchain data for monerod
# wallet_dir = "~/.bitmonero/wallets"     # Wallet files (defaults to data_dir)
# log_dir = "~/.local/share/monerokeeper" # monerod.log / wallet-rpc.log land here

# Network
testnet = false
daemon_port = 18081                       # monerod RPC port
wallet_port = 18083                       # monero-wallet-rpc RPC port

# RPC credentials (random passwords are generated when left unset)
# daemon_rpc_user = "monerokeeper"
# daemon_rpc_pass = ""
# wallet_rpc_user = "monerokeeper"
# wallet_rpc_pass = ""

# Executables, looked up next to monerokeeper, in the working directory, then on PATH
daemon_binary = "monerod"
wallet_binary = "monero-wallet-rpc"

# Timeouts (seconds)
startup_timeout = 30                      # Wait for an RPC port to accept connections
shutdown_timeout = 10                     # Wait for a process to exit after SIGINT
poll_interval = 1                         # Delay between readiness probes
connect_timeout = 1                       # Deadline of a single readiness probe

# Escalation policy
kill_on_shutdown_timeout = false          # SIGKILL a process that ignores SIGINT
terminate_on_failed_start = false         # Stop a process that never became ready
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
