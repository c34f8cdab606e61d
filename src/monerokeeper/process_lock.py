"""Single instance locking for the keeper process."""

import fcntl
import logging
import os
import signal
import time
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from monerokeeper.config import KeeperConfig

logger = logging.getLogger(__name__)

LOCK_NAME = "monerokeeper.lock"


class ProcessLock:
    """An flock-held file that records the PID of the running keeper."""

    def __init__(self, lock_file: Path) -> None:
        self.lock_file = lock_file
        self.lock_fd: int | None = None

    @classmethod
    def for_config(cls, config: "KeeperConfig") -> "ProcessLock":
        return cls((config.log_dir or config.data_dir) / LOCK_NAME)

    def acquire(self) -> bool:
        """Try to acquire exclusive lock. Returns True if successful."""
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY)
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            os.ftruncate(self.lock_fd, 0)
            os.write(self.lock_fd, str(os.getpid()).encode())
            os.fsync(self.lock_fd)
            return True
        except OSError:
            if self.lock_fd is not None:
                os.close(self.lock_fd)
                self.lock_fd = None
            return False

    def release(self) -> None:
        """Release the lock."""
        if self.lock_fd is not None:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
            finally:
                self.lock_fd = None

    def is_held(self) -> bool:
        """True if some process currently holds the lock."""
        if self.lock_fd is not None:
            return True
        try:
            fd = os.open(str(self.lock_file), os.O_RDONLY)
        except FileNotFoundError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        finally:
            os.close(fd)

    def running_pid(self) -> int | None:
        """PID of the keeper holding the lock, or None."""
        if not self.is_held():
            return None
        try:
            return int(self.lock_file.read_text().strip())
        except (OSError, ValueError):
            return None

    @staticmethod
    def is_process_running(pid: int) -> bool:
        """Check if a process with given PID is running."""
        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True

    @staticmethod
    def stop_process(pid: int, timeout: float = 60.0) -> bool:
        """Send SIGTERM and wait for the keeper to finish its own shutdown."""
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return True

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not ProcessLock.is_process_running(pid):
                return True
            time.sleep(0.5)

        logger.warning("Keeper PID %s still running after %ss", pid, timeout)
        return False
