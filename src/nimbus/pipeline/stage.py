"""External process stages.

Spawns one OS process per pipeline stage and owns its standard streams.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, Optional, Union

from nimbus.pipeline.model import ExitCodes, ExternalStageSpec

logger = logging.getLogger(__name__)

SIGPIPE_EXIT = -signal.SIGPIPE if hasattr(signal, "SIGPIPE") else None

# Each stage leads its own process group so a kill also reaches anything it
# forked that still holds its pipes open.
PROCESS_GROUPS = os.name == "posix"


class StageSpawnError(Exception):
    """Raised when an external stage cannot be started."""

    def __init__(self, executable: str, reason: str, exit_code: int = ExitCodes.GENERAL_ERROR):
        """Initialize spawn error.

        Args:
            executable: Executable that failed to start
            reason: Human readable cause
            exit_code: Shell-style exit code for the failure
        """
        self.executable = executable
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(f"Failed to start '{executable}': {reason}")

    @property
    def user_message(self) -> str:
        if self.exit_code == ExitCodes.COMMAND_NOT_FOUND:
            return f"{self}. Is '{self.executable}' installed and in your PATH?"
        return str(self)


@dataclass
class StageHandle:
    """A running external stage.

    Owned by the executor for one pipeline execution. The streams are binary
    pipes; each one is read or written by exactly one relay.
    """

    index: int
    spec: ExternalStageSpec
    process: subprocess.Popen

    @property
    def name(self) -> str:
        return self.spec.executable

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdin(self) -> Optional[IO[bytes]]:
        return self.process.stdin

    @property
    def stdout(self) -> Optional[IO[bytes]]:
        return self.process.stdout

    @property
    def stderr(self) -> Optional[IO[bytes]]:
        return self.process.stderr

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def is_running(self) -> bool:
        return self.process.poll() is None

    def __repr__(self) -> str:
        return f"StageHandle({self.index}, {self.name!r}, pid={self.pid})"


class ProcessStageRunner:
    """Start, wait for and terminate external stage processes."""

    def __init__(
        self,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        """Initialize stage runner.

        Args:
            cwd: Working directory for stages (inherited if None)
            env: Environment overrides merged over os.environ (inherited if None)
        """
        self.cwd = Path(cwd) if cwd else None
        self.env = dict(env) if env else None

    def _environment(self) -> Optional[Dict[str, str]]:
        if self.env is None:
            return None
        return {**os.environ, **self.env}

    def start(self, spec: ExternalStageSpec, index: int = 0) -> StageHandle:
        """Spawn a stage with piped stdin, stdout and stderr.

        No shell is involved; the argument vector goes straight to the OS.

        Args:
            spec: Stage to start
            index: Position of the stage in its pipeline

        Returns:
            Handle for the running stage

        Raises:
            StageSpawnError: If the executable is missing or not executable
        """
        try:
            process = subprocess.Popen(
                spec.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                env=self._environment(),
                close_fds=True,
                shell=False,
                start_new_session=PROCESS_GROUPS,
            )
        except FileNotFoundError as e:
            raise StageSpawnError(
                spec.executable,
                "command not found",
                ExitCodes.COMMAND_NOT_FOUND,
            ) from e
        except PermissionError as e:
            raise StageSpawnError(
                spec.executable,
                "permission denied",
                ExitCodes.NOT_EXECUTABLE,
            ) from e
        except OSError as e:
            raise StageSpawnError(spec.executable, e.strerror or str(e)) from e

        handle = StageHandle(index=index, spec=spec, process=process)
        logger.debug(f"Started stage {index}: {spec} (pid {process.pid})")
        return handle

    def wait_for_exit(self, handle: StageHandle, timeout: Optional[float] = None) -> int:
        """Wait for a stage to exit and reap it.

        Args:
            handle: Stage to wait for
            timeout: Optional timeout in seconds

        Returns:
            Exit code (negative signal number if killed by a signal)

        Raises:
            subprocess.TimeoutExpired: If the timeout elapses
        """
        code = handle.process.wait(timeout=timeout)
        logger.debug(f"Stage {handle.index} ({handle.name}) exited with {code}")
        return code

    def terminate(self, handle: StageHandle) -> None:
        """Kill a stage and its process group. Safe to call repeatedly and after exit.

        The group is signalled even when the stage itself has exited, since a
        background child may still hold the stage's stdout or stderr open.
        """
        if PROCESS_GROUPS:
            try:
                os.killpg(handle.pid, signal.SIGKILL)
                logger.debug(f"Killed process group of stage {handle.index} ({handle.name})")
            except (ProcessLookupError, PermissionError):
                pass
            return

        if handle.process.poll() is not None:
            return
        try:
            handle.process.kill()
            logger.debug(f"Killed stage {handle.index} ({handle.name})")
        except ProcessLookupError:
            pass

    def close(self, handle: StageHandle) -> None:
        """Close whatever streams of a finished stage are still open."""
        for stream in (handle.stdin, handle.stdout, handle.stderr):
            if stream is None or stream.closed:
                continue
            try:
                stream.close()
            except BrokenPipeError:
                pass
