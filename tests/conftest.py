"""Shared test configuration and fixtures."""

import logging
import os
import socket
import stat
import sys
import textwrap
from functools import partial
from pathlib import Path

import pytest

from monerokeeper.cli import cleanup_logging
from monerokeeper.config import SupervisorSettings
from monerokeeper.locate import locate

FAKE_SERVICE = """\
#!{python}
import json
import os
import signal
import socket
import sys
import time

args = sys.argv[1:]
port = int(args[args.index("--rpc-bind-port") + 1])
mode = os.environ.get("FAKE_SERVICE_MODE", "")

record = os.environ.get("FAKE_SERVICE_RECORD")
if record:
    with open(record, "a") as f:
        entry = {{"name": os.path.basename(sys.argv[0]), "argv": args, "pid": os.getpid()}}
        f.write(json.dumps(entry) + "\\n")

if mode == "exit":
    sys.exit(3)

if mode == "ignore-sigint":
    signal.signal(signal.SIGINT, signal.SIG_IGN)
else:
    signal.signal(signal.SIGINT, lambda *_: sys.exit(0))

if mode == "never-bind":
    while True:
        time.sleep(0.1)

server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
server.bind(("127.0.0.1", port))
server.listen(16)
server.settimeout(0.1)
print("listening on", port, flush=True)
while True:
    try:
        conn, _ = server.accept()
        conn.close()
    except socket.timeout:
        pass
"""


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port():
    """A port nothing is listening on."""
    return _free_port()


@pytest.fixture
def port_factory():
    """Hand out distinct free ports."""
    seen: set[int] = set()

    def make() -> int:
        while True:
            port = _free_port()
            if port not in seen:
                seen.add(port)
                return port

    return make


@pytest.fixture
def listener():
    """A listening socket on 127.0.0.1; yields its port."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(64)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def bin_dir(tmp_path):
    """Directory holding fake monerod and monero-wallet-rpc executables."""
    directory = tmp_path / "bin"
    directory.mkdir()
    script = textwrap.dedent(FAKE_SERVICE).format(python=sys.executable)
    for name in ("monerod", "monero-wallet-rpc"):
        path = directory / name
        path.write_text(script)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return directory


@pytest.fixture
def fake_locator(bin_dir):
    """Locator that only finds the fake executables."""
    return partial(locate, paths=[bin_dir])


@pytest.fixture
def record_file(tmp_path, monkeypatch):
    """File the fake services append their command lines to."""
    path = tmp_path / "spawned.jsonl"
    monkeypatch.setenv("FAKE_SERVICE_RECORD", str(path))
    return path


@pytest.fixture
def fast_settings():
    """Supervisor timings suited to tests."""
    return SupervisorSettings(
        startup_timeout=10,
        shutdown_timeout=5,
        poll_interval=0.1,
        connect_timeout=0.5,
    )


def read_records(path: Path) -> list[dict]:
    """Entries written by fake services, oldest first."""
    import json

    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines() if line]


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True
