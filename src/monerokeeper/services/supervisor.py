"""Lifecycle management for a single external service process."""

import asyncio
import contextlib
import logging
import os
import signal
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from ..config import MAX_PORT, ServiceConfig, SupervisorSettings
from ..credentials import Credentials
from ..error_handling import COMPONENT_UTIL, E, KeeperError, Kind, Op
from ..locate import locate
from ..net import probe_port, wait_for_port

logger = logging.getLogger(__name__)

NO_PID = "-1"


class ProcessState(Enum):
    """Reported lifecycle state of a supervised process."""

    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    ATTACHED = "attached"  # someone else's process already owns the port
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class ProcessSupervisor:
    """Spawns, probes and stops one external service.

    Subclasses provide the component name and the command line. If the
    service port already accepts connections when ``start`` runs, the
    supervisor attaches to it instead of spawning and will not stop it.
    """

    component = COMPONENT_UTIL

    def __init__(
        self,
        service: ServiceConfig,
        settings: SupervisorSettings | None = None,
        *,
        locator: Callable[[str], Path] = locate,
        log_dir: Path | None = None,
    ):
        self.service = service
        self.settings = settings or SupervisorSettings()
        self.locator = locator
        self.log_dir = log_dir
        self.credentials = Credentials.resolve(service.rpc_user, service.rpc_pass)

        self._lock = threading.Lock()
        self._process: asyncio.subprocess.Process | None = None
        self._pending_start: asyncio.Future | None = None
        self._state = ProcessState.UNSTARTED

    @property
    def rpc_port(self) -> int:
        return self.service.port

    @property
    def rpc_user(self) -> str:
        return self.credentials.username

    @property
    def rpc_pass(self) -> str:
        return self.credentials.password

    @property
    def state(self) -> ProcessState:
        with self._lock:
            return self._state

    @property
    def attached(self) -> bool:
        return self.state is ProcessState.ATTACHED

    @property
    def pid(self) -> str:
        """PID of the owned process as a string, ``"-1"`` when there is none."""
        with self._lock:
            if self._process is None:
                return NO_PID
            return str(self._process.pid)

    @property
    def returncode(self) -> int | None:
        with self._lock:
            return None if self._process is None else self._process.returncode

    def build_args(self) -> list[str]:
        """Command line arguments, excluding the executable."""
        raise NotImplementedError("Subclass must implement build_args()")

    def validate(self) -> None:
        """Reject configurations the service could never start with."""
        port = self.service.port
        if not 0 < port <= MAX_PORT:
            raise E(
                Op.VALIDATE_CONFIG,
                self.component,
                Kind.CONFIG,
                ValueError(f"invalid RPC port: {port}"),
            )

    async def check_health(self) -> None:
        """Hook run once the port accepts connections."""

    def _set_state(self, state: ProcessState) -> None:
        with self._lock:
            self._state = state

    async def start(self) -> None:
        """Attach to a running service or spawn one and wait for its port.

        A call made while another start is in flight waits for that start
        and shares its outcome.

        Raises:
            KeeperError: CONFIG for invalid settings, PROCESS when the
                executable cannot be found or spawned, exits early or is shut
                down before it is ready, TIMEOUT when the port never opens,
                NETWORK when the health check fails
        """
        self.validate()

        with self._lock:
            if self._state in (ProcessState.RUNNING, ProcessState.ATTACHED):
                logger.debug("%s already %s", self.component, self._state)
                return
            pending = self._pending_start
            if pending is None:
                pending = asyncio.get_running_loop().create_future()
                self._pending_start = pending
                self._state = ProcessState.STARTING
                owner = True
            else:
                owner = False

        if not owner:
            logger.debug("%s start already in progress, waiting for it", self.component)
            await asyncio.shield(pending)
            return

        try:
            await self._start()
        except BaseException as e:
            with self._lock:
                if self._state not in (ProcessState.STOPPING, ProcessState.STOPPED):
                    self._state = ProcessState.FAILED
            if isinstance(e, Exception):
                pending.set_exception(e)
            else:
                pending.set_exception(
                    E(Op.START, self.component, Kind.PROCESS, RuntimeError("start was cancelled")),
                )
            # Waiters re-raise it; nobody else has to retrieve it
            pending.exception()
            raise
        else:
            pending.set_result(None)
        finally:
            with self._lock:
                self._pending_start = None

    async def _start(self) -> None:
        port = self.rpc_port
        with self._lock:
            process = self._process

        if process is not None and process.returncode is None:
            # Left running by an earlier start that timed out
            logger.info(
                "%s (PID %s) is still running, waiting for port %s again",
                self.component,
                process.pid,
                port,
            )
        else:
            if process is not None:
                with self._lock:
                    if self._process is process:
                        self._process = None

            if await probe_port(port, timeout=self.settings.connect_timeout):
                logger.info(
                    "%s already listening on port %s, attaching to it",
                    self.component,
                    port,
                )
                self._set_state(ProcessState.ATTACHED)
                return

            executable = self._resolve_executable()
            process = await self._spawn(executable, self.build_args())
            with self._lock:
                self._process = process
            logger.info("Started %s (PID %s), waiting for port %s", self.component, process.pid, port)

        try:
            await wait_for_port(
                port,
                timeout=self.settings.startup_timeout,
                interval=self.settings.poll_interval,
                connect_timeout=self.settings.connect_timeout,
                component=self.component,
                abort=lambda: self._startup_aborted(process),
            )
            await self.check_health()
        except KeeperError:
            if self._stopped_during_start(process):
                logger.info("%s was shut down before it became ready", self.component)
            elif self.settings.terminate_on_failed_start:
                await self._terminate(process)
            else:
                logger.warning(
                    "%s (PID %s) did not become ready and was left running",
                    self.component,
                    process.pid,
                )
            raise

        self._set_state(ProcessState.RUNNING)
        logger.info("%s ready on port %s", self.component, port)

    def _resolve_executable(self) -> Path:
        name = self.service.executable
        if os.sep in name:
            return Path(name)
        try:
            return self.locator(name)
        except Exception as e:
            raise E(Op.PROCESS_SPAWN, self.component, Kind.PROCESS, e) from e

    async def _spawn(
        self,
        executable: Path,
        args: list[str],
    ) -> asyncio.subprocess.Process:
        logger.debug("Spawning %s %s", executable, " ".join(self._redacted(args)))
        try:
            if self.log_dir is None:
                return await self._exec(executable, args, asyncio.subprocess.DEVNULL)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_dir / f"{self.component}.log", "ab") as output:
                return await self._exec(executable, args, output)
        except OSError as e:
            raise E(Op.PROCESS_SPAWN, self.component, Kind.PROCESS, e) from e

    async def _exec(self, executable: Path, args: list[str], output) -> asyncio.subprocess.Process:
        # Own session so a terminal Ctrl-C reaches us first and we stop children in order
        return await asyncio.create_subprocess_exec(
            str(executable),
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=output,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )

    def _redacted(self, args: list[str]) -> list[str]:
        secrets = {self.credentials.login}
        return ["***" if a in secrets else a for a in args]

    def _stopped_during_start(self, process: asyncio.subprocess.Process) -> bool:
        with self._lock:
            return self._process is not process or self._state in (
                ProcessState.STOPPING,
                ProcessState.STOPPED,
            )

    def _startup_aborted(self, process: asyncio.subprocess.Process) -> str | None:
        if self._stopped_during_start(process):
            return f"{self.component} was shut down before port {self.rpc_port} opened"
        if process.returncode is None:
            return None
        return (
            f"{self.service.executable} exited with code {process.returncode} "
            f"before port {self.rpc_port} opened"
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop a process that never became ready."""
        if process.returncode is None:
            logger.warning("Terminating %s (PID %s) after failed start", self.component, process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self.settings.shutdown_timeout)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        with self._lock:
            if self._process is process:
                self._process = None

    async def shutdown(self) -> None:
        """Interrupt the owned process and wait for it to exit.

        A no-op when no process is owned, including attached services and
        supervisors that were already shut down.

        Raises:
            KeeperError: PROCESS when the signal cannot be delivered, TIMEOUT
                when the process outlives ``shutdown_timeout`` and killing is
                disabled
        """
        with self._lock:
            process = self._process
            if process is None:
                return
            self._state = ProcessState.STOPPING

        if process.returncode is None:
            logger.info("Stopping %s (PID %s)", self.component, process.pid)
            try:
                process.send_signal(signal.SIGINT)
            except OSError as e:
                self._set_state(ProcessState.FAILED)
                raise E(
                    Op.SHUTDOWN,
                    self.component,
                    Kind.PROCESS,
                    RuntimeError(f"failed to send interrupt signal: {e}"),
                ) from e

            try:
                await asyncio.wait_for(process.wait(), self.settings.shutdown_timeout)
            except asyncio.TimeoutError:
                if not self.settings.kill_on_shutdown_timeout:
                    self._set_state(ProcessState.FAILED)
                    raise E(
                        Op.SHUTDOWN,
                        self.component,
                        Kind.TIMEOUT,
                        TimeoutError("shutdown timed out"),
                    ) from None
                await self._kill(process)

        with self._lock:
            if self._process is process:
                self._process = None
            self._state = ProcessState.STOPPED
        logger.info("%s exited with code %s", self.component, process.returncode)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        logger.warning(
            "%s (PID %s) ignored SIGINT for %ss, killing it",
            self.component,
            process.pid,
            self.settings.shutdown_timeout,
        )
        try:
            process.kill()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(process.wait(), self.settings.shutdown_timeout)
        except asyncio.TimeoutError:
            self._set_state(ProcessState.FAILED)
            raise E(
                Op.SHUTDOWN,
                self.component,
                Kind.TIMEOUT,
                TimeoutError("process survived SIGKILL"),
            ) from None
