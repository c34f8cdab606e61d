"""Command-line interface for monerokeeper."""

import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import KeeperConfig, create_sample_config, load_config
from .core.daemon import KeeperDaemon
from .error_handling import KeeperError, handle_error
from .locate import locate
from .net import port_open
from .process_lock import ProcessLock

console = Console()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "monerokeeper" / "config.toml"


def setup_logging(
    *,
    verbose: bool = False,
    config: KeeperConfig | None = None,
) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    show_path = level == logging.DEBUG
    handlers: list[logging.Handler] = [
        RichHandler(console=console, rich_tracebacks=True, show_path=show_path),
    ]

    if config and config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.log_dir / "monerokeeper.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            ),
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """monerokeeper - run monerod and monero-wallet-rpc as one supervised unit."""
    try:
        ctx.ensure_object(dict)
        loaded_config = load_config(config)
        ctx.obj["config"] = loaded_config
        ctx.obj["verbose"] = verbose

        setup_logging(verbose=verbose, config=loaded_config)
    except (OSError, ValueError, ValidationError) as e:
        console.print(f"[red]Configuration Error:[/red] Failed to load configuration: {e}")
        sys.exit(1)


@cli.group("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Configuration management commands."""


@config_cmd.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: KeeperConfig = ctx.obj["config"]

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Data Directory", str(config.data_dir))
    table.add_row("Wallet Directory", str(config.effective_wallet_dir))
    table.add_row("Log Directory", str(config.log_dir) if config.log_dir else "Not configured")
    table.add_row("Network", "testnet" if config.testnet else "mainnet")
    table.add_row("Daemon Port", str(config.daemon_port))
    table.add_row("Wallet Port", str(config.wallet_port))
    table.add_row("Daemon RPC Password", "***" if config.daemon_rpc_pass else "Generated")
    table.add_row("Wallet RPC Password", "***" if config.wallet_rpc_pass else "Generated")
    table.add_row("Startup Timeout", f"{config.startup_timeout:g}s")
    table.add_row("Shutdown Timeout", f"{config.shutdown_timeout:g}s")
    table.add_row("Kill On Shutdown Timeout", str(config.kill_on_shutdown_timeout))
    table.add_row("Terminate On Failed Start", str(config.terminate_on_failed_start))

    console.print(table)


@config_cmd.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate current configuration."""
    config: KeeperConfig = ctx.obj["config"]

    console.print("[bold]Configuration Validation[/bold]")

    errors = []

    for name, path in [
        ("Data", config.data_dir),
        ("Wallet", config.effective_wallet_dir),
        ("Log", config.log_dir),
    ]:
        if path is None:
            continue
        try:
            path.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]✓[/green] {name} directory: {path}")
        except OSError as e:
            console.print(f"[red]✗[/red] {name} directory: {e}")
            errors.append(f"{name} directory: {e}")

    for binary in (config.daemon_binary, config.wallet_binary):
        try:
            console.print(f"[green]✓[/green] {binary}: {locate(binary)}")
        except KeeperError as e:
            console.print(f"[red]✗[/red] {binary}: not found")
            errors.append(str(e))

    if errors:
        console.print(f"\n[red]Found {len(errors)} configuration errors[/red]")
        sys.exit(1)
    else:
        console.print("\n[green]Configuration is valid[/green]")


@config_cmd.command("init")
@click.option(
    "--path",
    "-p",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    help="Path for the configuration file",
)
def config_init(path: Path) -> None:
    """Create a sample configuration file."""
    try:
        create_sample_config(path)
        console.print(f"[green]Created sample configuration at {path}[/green]")
        console.print("Please edit the configuration file with your settings.")
    except OSError as e:
        console.print(f"[red]Error creating configuration: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check that monerod and monero-wallet-rpc can be found."""
    config: KeeperConfig = ctx.obj["config"]

    missing = 0
    for binary in (config.daemon_binary, config.wallet_binary):
        try:
            console.print(f"[green]✓[/green] {binary}: {locate(binary)}")
        except KeeperError as e:
            missing += 1
            e.display_to_user()

    if missing:
        sys.exit(1)


@cli.command()
@click.option("--detach", "-d", is_flag=True, help="Run in the background")
@click.pass_context
def run(ctx: click.Context, detach: bool) -> None:
    """Start monerod, then monero-wallet-rpc, and keep them running until stopped."""
    config: KeeperConfig = ctx.obj["config"]

    running = ProcessLock.for_config(config).running_pid()
    if running:
        console.print(f"[yellow]monerokeeper is already running (PID {running})[/yellow]")
        sys.exit(1)

    keeper_daemon = KeeperDaemon(config)
    try:
        if detach:
            exit_code = keeper_daemon.start_daemon()
        else:
            exit_code = keeper_daemon.start_foreground()
    except KeeperError as e:
        handle_error(e)
        sys.exit(1)

    sys.exit(exit_code)


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop a running monerokeeper and the services it started."""
    config: KeeperConfig = ctx.obj["config"]

    pid = ProcessLock.for_config(config).running_pid()
    if not pid:
        console.print("[yellow]monerokeeper is not running[/yellow]")
        return

    console.print(f"[blue]Stopping monerokeeper (PID {pid})...[/blue]")

    if ProcessLock.stop_process(pid):
        console.print("[green]monerokeeper stopped[/green]")
    else:
        console.print(f"[red]Failed to stop monerokeeper process {pid}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show whether each service port accepts connections."""
    config: KeeperConfig = ctx.obj["config"]

    pid = ProcessLock.for_config(config).running_pid()
    if pid:
        console.print(f"[green]monerokeeper running (PID {pid})[/green]")
    else:
        console.print("[dim]monerokeeper not running[/dim]")

    table = Table(title="Services")
    table.add_column("Service")
    table.add_column("Port")
    table.add_column("Status")

    for name, port in [
        ("monerod", config.daemon_port),
        ("monero-wallet-rpc", config.wallet_port),
    ]:
        if port_open(port):
            table.add_row(name, str(port), "[green]listening[/green]")
        else:
            table.add_row(name, str(port), "[red]down[/red]")

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
