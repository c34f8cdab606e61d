"""Executable lookup."""

import logging
import os
import sys
from collections.abc import Iterable
from pathlib import Path

from .error_handling import COMPONENT_UTIL, E, Kind, Op

logger = logging.getLogger(__name__)


def search_path() -> list[Path]:
    """Directories searched for executables, in order.

    The directory of the running program, the working directory, then PATH.
    """
    elements: list[Path] = []

    if sys.argv and sys.argv[0]:
        elements.append(Path(sys.argv[0]).resolve().parent)

    try:
        elements.append(Path.cwd())
    except OSError as e:
        logger.warning("Failed to get working directory: %s", e)

    path = os.environ.get("PATH", "")
    elements.extend(Path(p) for p in path.split(os.pathsep) if p)
    return elements


def locate(name: str, paths: Iterable[Path] | None = None) -> Path:
    """Return the first executable file called ``name`` on the search path."""
    for directory in search_path() if paths is None else paths:
        candidate = Path(directory) / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate

    raise E(
        Op.PROCESS_SPAWN,
        COMPONENT_UTIL,
        Kind.PROCESS,
        FileNotFoundError(f"{name} not found"),
        solution=f"Install {name} or add its directory to PATH",
    )
