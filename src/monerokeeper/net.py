"""TCP readiness probing for supervised services."""

import asyncio
import logging
import socket
from collections.abc import Callable

from .error_handling import COMPONENT_UTIL, E, Kind, Op

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_STARTUP_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_CONNECT_TIMEOUT = 1.0


def port_open(
    port: int,
    host: str = DEFAULT_HOST,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> bool:
    """Return True if something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


async def probe_port(
    port: int,
    host: str = DEFAULT_HOST,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> bool:
    """Async variant of port_open. Opens and immediately closes a connection."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout,
        )
    except (OSError, asyncio.TimeoutError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def wait_for_port(
    port: int,
    *,
    timeout: float = DEFAULT_STARTUP_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    host: str = DEFAULT_HOST,
    component: str = COMPONENT_UTIL,
    abort: Callable[[], str | None] | None = None,
) -> None:
    """Block until host:port accepts a TCP connection.

    Polls every ``interval`` seconds until ``timeout`` elapses. Cancelling the
    awaiting task stops the wait with ``asyncio.CancelledError``.

    Args:
        port: Port to probe
        timeout: Overall deadline in seconds
        interval: Sleep between failed attempts
        connect_timeout: Deadline of a single connection attempt
        host: Host to connect to
        component: Component name used to tag errors
        abort: Called before every attempt; a non-empty return value stops
            the wait with a PROCESS-kind error carrying that message

    Raises:
        KeeperError: TIMEOUT kind when the deadline passes, PROCESS kind
            when ``abort`` fires
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0

    while True:
        # Yield once so a task cancelled before its first step never probes
        await asyncio.sleep(0)

        if abort is not None:
            reason = abort()
            if reason:
                raise E(Op.PORT_BINDING, component, Kind.PROCESS, RuntimeError(reason))

        attempts += 1
        if await probe_port(port, host, connect_timeout):
            logger.debug("Port %s ready after %d attempt(s)", port, attempts)
            return

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    raise E(
        Op.PORT_BINDING,
        component,
        Kind.TIMEOUT,
        TimeoutError(f"timeout waiting for port {port}"),
    )
