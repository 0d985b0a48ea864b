"""Reload trigger that supervises the workload as a child process.

The supervisor starts the child with the sidecar's own stdout/stderr,
forwards reloads as SIGHUP and kills the child on stop. If the child exits
without being told to, a ProcessCrashError is published on ``crashes``; the
coordinator treats that as fatal.
"""

import asyncio
import contextlib
import logging
import shlex
import signal

from configmap_sync.domain import ProcessState, TriggerKind
from configmap_sync.errors import (
    ProcessCrashError,
    ReloadTriggerError,
    SetupError,
    ShutdownError,
)
from configmap_sync.reload.trigger import ReloadTrigger, Stoppable

logger = logging.getLogger(__name__)

RELOAD_SIGNAL = signal.SIGHUP


class ProcessSupervisor(ReloadTrigger, Stoppable):
    """Owns the lifecycle of one child process."""

    def __init__(self, command: str, args: list[str] | tuple[str, ...] = ()):
        self.command = command
        self.args = list(args)
        self._state = ProcessState.NOT_STARTED
        self._process: asyncio.subprocess.Process | None = None
        self._wait_task: asyncio.Task | None = None
        self._returncode: int | None = None
        self._stopping = False
        self._crashes: asyncio.Queue[ProcessCrashError] = asyncio.Queue()

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.PROCESS

    @property
    def crashes(self) -> asyncio.Queue[ProcessCrashError]:
        return self._crashes

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def stopping(self) -> bool:
        return self._stopping

    def lifecycle(self) -> Stoppable:
        return self

    async def start(self) -> None:
        """Spawn the child process.

        Raises:
            RuntimeError: If the process was already started.
            SetupError: If the process could not be spawned.
        """
        if self._state != ProcessState.NOT_STARTED:
            raise RuntimeError(f"Cannot start child process in state {self._state.value}")

        logger.info(f"Starting child process: {shlex.join([self.command, *self.args])}")
        try:
            process = await asyncio.create_subprocess_exec(self.command, *self.args)
        except OSError as e:
            logger.error(f"Child process failed to start: {e}")
            raise SetupError(f"Child process {self.command!r} failed to start: {e}") from e

        self._process = process
        self._state = ProcessState.RUNNING
        self._wait_task = asyncio.create_task(self._wait(process))

    async def _wait(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        self._returncode = returncode
        if returncode != 0:
            logger.error(f"Child process failed: exit status {returncode}")
        else:
            logger.info("Child process terminated: exit status 0")

        self._process = None
        self._state = ProcessState.EXITED

        if not self._stopping:
            self._crashes.put_nowait(ProcessCrashError(returncode))

    async def reload(self) -> None:
        """Send SIGHUP to the child; a no-op when no child is running.

        Raises:
            ReloadTriggerError: If the signal could not be delivered.
        """
        process = self._process
        if process is None or process.returncode is not None:
            logger.debug("No child process running, skipping reload signal")
            return

        logger.info("Sending SIGHUP to application")
        try:
            process.send_signal(RELOAD_SIGNAL)
        except ProcessLookupError:
            logger.warning("Child process exited before reload signal was delivered")
        except OSError as e:
            raise ReloadTriggerError(f"Unable to signal child process {process.pid}: {e}") from e

    def stop(self) -> None:
        """Kill the child process. Only the first call has any effect.

        Raises:
            ShutdownError: If the kill signal could not be delivered.
        """
        if self._stopping:
            return
        self._stopping = True

        process = self._process
        if process is None or process.returncode is not None:
            return

        logger.info(f"Sending SIGKILL to child process {process.pid}")
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("Child process already gone")
        except OSError as e:
            logger.error(f"Kill failed: {e}")
            raise ShutdownError(f"Unable to kill child process {process.pid}: {e}") from e

    async def wait_stopped(self, timeout: float | None = None) -> int | None:
        """Wait for the background wait task and return the exit code."""
        if self._wait_task is None:
            return self._returncode
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(asyncio.shield(self._wait_task), timeout=timeout)
        return self._returncode
