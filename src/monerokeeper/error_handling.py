"""Classified errors for the process supervisors.

Every failure that leaves a supervisor or the keeper is a ``KeeperError``
tagged with the operation that failed, the component it failed in and a
coarse ``Kind`` that callers can dispatch on.
"""

import copy
import logging
from enum import Enum

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)
console = Console(stderr=True)

COMPONENT_DAEMON = "monerod"
COMPONENT_WALLET_RPC = "wallet-rpc"
COMPONENT_UTIL = "util"


class Kind(Enum):
    """Coarse error categories."""

    UNKNOWN = "unknown error"
    NETWORK = "network error"
    PROCESS = "process error"
    CONFIG = "configuration error"
    TIMEOUT = "timeout error"
    SYSTEM = "system error"

    def __str__(self) -> str:
        return self.value


class Op(Enum):
    """Operations that can fail."""

    START = "Start"
    SHUTDOWN = "Shutdown"
    HEALTH_CHECK = "HealthCheck"
    PORT_BINDING = "PortBinding"
    PROCESS_SPAWN = "ProcessSpawn"
    VALIDATE_CONFIG = "ValidateConfig"

    def __str__(self) -> str:
        return self.value


class KeeperError(Exception):
    """A failure tagged with operation, component and kind."""

    def __init__(
        self,
        op: Op | None = None,
        component: str = "",
        kind: Kind = Kind.UNKNOWN,
        cause: BaseException | None = None,
        *,
        solution: str | None = None,
        log_level: int = logging.ERROR,
    ):
        super().__init__(op, component, kind, cause)
        self.op = op
        self.component = component
        self.kind = kind
        self.cause = cause
        self.solution = solution
        self.log_level = log_level
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.component, str(self.op) if self.op else "", str(self.kind)]
        if self.cause is not None:
            parts.append(str(self.cause))
        return ": ".join(parts)

    def __repr__(self) -> str:
        return (
            f"KeeperError(op={self.op}, component={self.component!r}, "
            f"kind={self.kind.name}, cause={self.cause!r})"
        )

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        color = "yellow" if self.kind is Kind.CONFIG else "red"
        title = self.kind.value.title()
        console.print(f"\n[{color} bold]{title}[/{color} bold]")
        console.print(f"[{color}]{escape(str(self))}[/{color}]")

        if self.solution:
            console.print(f"\n[green]Solution:[/green] {self.solution}")

        logger.log(self.log_level, "%s: %s", self.kind.name.lower(), self)


def E(*args: object, **kwargs) -> KeeperError:
    """Build a KeeperError from its parts, given in any order.

    ``Op`` values set the operation, ``Kind`` values the kind, plain strings
    the component and exceptions the cause. A KeeperError cause is copied so
    the new error does not alias the one passed in.
    """
    err = KeeperError(**kwargs)
    for arg in args:
        if isinstance(arg, Op):
            err.op = arg
        elif isinstance(arg, Kind):
            err.kind = arg
        elif isinstance(arg, str):
            err.component = arg
        elif isinstance(arg, KeeperError):
            err.cause = copy.copy(arg)
        elif isinstance(arg, BaseException):
            err.cause = arg
    if err.cause is not None:
        err.__cause__ = err.cause
    return err


def _chain(err: BaseException | None):
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        if isinstance(err, KeeperError) and err.cause is not None:
            err = err.cause
        else:
            err = err.__cause__ or err.__context__


def get_kind(err: BaseException | None) -> Kind:
    """Return the Kind of the first KeeperError in err's cause chain."""
    for item in _chain(err):
        if isinstance(item, KeeperError):
            return item.kind
    return Kind.UNKNOWN


def same_kind(err: BaseException | None, target: BaseException | None) -> bool:
    """Compare two classified errors by kind only."""
    if not isinstance(err, KeeperError) or not isinstance(target, KeeperError):
        return False
    return err.kind is target.kind


def handle_error(error: BaseException, *, component: str = COMPONENT_UTIL) -> None:
    """Display any exception, classifying it first if needed."""
    if isinstance(error, KeeperError):
        error.display_to_user()
        return

    if isinstance(error, FileNotFoundError | PermissionError):
        kind = Kind.SYSTEM
    elif isinstance(error, ConnectionError):
        kind = Kind.NETWORK
    elif isinstance(error, TimeoutError):
        kind = Kind.TIMEOUT
    else:
        kind = Kind.UNKNOWN

    E(component, kind, error).display_to_user()
