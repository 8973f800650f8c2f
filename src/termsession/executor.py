"""One-off command execution on pipes, with process-group timeout kill."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
from dataclasses import dataclass

from termsession.errors import ErrorKind, InvalidArgumentError, SpawnFailedError

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT = 0.5  # Seconds to collect remaining output after a timeout kill


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a single ``execute`` call.

    ``exit_code`` follows ``subprocess.Popen.returncode``: a negative
    value -N means the process was terminated by signal N. It is None
    when the call timed out.
    """

    stdout: bytes
    stderr: bytes
    exit_code: int | None
    timed_out: bool
    duration: float  # Seconds, wall clock

    @property
    def signal(self) -> int | None:
        """Number of the signal that terminated the process, if any."""
        if self.exit_code is not None and self.exit_code < 0:
            return -self.exit_code
        return None

    @property
    def error_kind(self) -> ErrorKind | None:
        return ErrorKind.TIMEOUT if self.timed_out else None


def _shell_command(command: str, args: list[str] | tuple[str, ...]) -> list[str]:
    shell = os.environ.get("SHELL") or "/bin/sh"
    script = " ".join([command, *(shlex.quote(a) for a in args)])
    return [shell, "-c", script]


def execute(
    command: str,
    args: list[str] | tuple[str, ...] = (),
    working_dir: str | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    shell: bool = False,
) -> ExecuteResult:
    """Run a command to completion (or timeout) and capture its output.

    The process runs in its own session with stdin closed. On timeout the
    whole process group is killed and reaped, and the output captured up
    to that point is returned. Processes that left the group (``setsid``)
    are not waited for: their pipes are closed after a short drain.

    Args:
        command: Executable, or a shell script when ``shell`` is set.
        args: Arguments (shell-quoted and appended when ``shell`` is set).
        working_dir: Working directory. Defaults to the current one.
        timeout: Seconds to wait. None waits for natural completion.
        env: Additional environment variables.
        shell: Run through ``$SHELL -c`` instead of executing directly.

    Raises:
        InvalidArgumentError: Empty command or non-positive timeout.
        SpawnFailedError: The process could not be launched.
    """
    if not command or not command.strip():
        raise InvalidArgumentError("Command must not be empty")
    if timeout is not None and timeout <= 0:
        raise InvalidArgumentError(f"Timeout must be positive, got {timeout}")

    argv = _shell_command(command, args) if shell else [command, *args]
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=working_dir,
            env={**os.environ, **(env or {})},
            start_new_session=True,  # New process group for tree-killing
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise SpawnFailedError(f"Failed to spawn {command}: {e}") from e

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        _kill_group(proc)
        stdout, stderr = e.stdout, e.stderr
        # communicate() keeps what it read so far and returns it all here
        try:
            stdout, stderr = proc.communicate(timeout=DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired as drained:
            # A process outside the group still holds the pipes open
            stdout = drained.stdout or stdout
            stderr = drained.stderr or stderr
            for pipe in (proc.stdout, proc.stderr):
                if pipe is not None:
                    pipe.close()
            proc.kill()
            proc.wait()
        duration = time.monotonic() - started
        logger.info(
            "Command timed out after %.2fs and was killed: %s", duration, " ".join(argv)
        )
        return ExecuteResult(stdout or b"", stderr or b"", None, True, duration)
    except BaseException:
        _kill_group(proc)
        proc.wait()
        raise

    duration = time.monotonic() - started
    logger.debug(
        "Command exited with %s in %.2fs: %s", proc.returncode, duration, " ".join(argv)
    )
    return ExecuteResult(stdout, stderr, proc.returncode, False, duration)


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process group already gone: %d", proc.pid)
    except PermissionError as e:
        logger.warning("Cannot kill process group %d: %s", proc.pid, e)
        proc.kill()
