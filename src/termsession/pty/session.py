"""PTY session — a managed pseudo-terminal running one interactive process."""

from __future__ import annotations

import enum
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_exponential,
)

from termsession.errors import (
    InvalidArgumentError,
    NotRunningError,
    SpawnFailedError,
    WriteFailedError,
)
from termsession.pty.buffer import OutputBuffer
from termsession.pty.pump import ReaderPump

logger = logging.getLogger(__name__)

WRITE_TIMEOUT = 5.0  # Seconds to keep retrying a full PTY input queue
PUMP_JOIN_TIMEOUT = 5.0
MAX_GEOMETRY = 10_000


class SessionState(enum.StrEnum):
    """Lifecycle states. Transitions only move forward."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"  # Process exited on its own; handles still held
    CLOSED = "closed"  # Handles released; terminal


@dataclass(frozen=True)
class OutputRead:
    """A chunk of session output plus the state observed with it."""

    data: bytes
    cursor: int
    dropped: int
    state: SessionState


@dataclass(frozen=True)
class SessionMetadata:
    """Point-in-time snapshot of a session for listing."""

    id: str
    tag: str | None
    state: SessionState
    command: list[str]
    cwd: str
    created_at: datetime
    last_activity: datetime
    pid: int | None
    cols: int
    rows: int
    buffered_bytes: int
    total_bytes: int
    exit_code: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tag": self.tag,
            "state": self.state.value,
            "command": " ".join(self.command),
            "cwd": self.cwd,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "pid": self.pid,
            "cols": self.cols,
            "rows": self.rows,
            "buffered_bytes": self.buffered_bytes,
            "total_bytes": self.total_bytes,
            "exit_code": self.exit_code,
        }


def validate_geometry(cols: int, rows: int) -> None:
    if not (0 < cols <= MAX_GEOMETRY and 0 < rows <= MAX_GEOMETRY):
        raise InvalidArgumentError(f"Invalid terminal geometry {cols}x{rows}")


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(): stdin is the slave, make it our
    # controlling terminal so ^C and job control reach the foreground group.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


@retry(
    retry=retry_if_exception_type((BlockingIOError, InterruptedError)),
    stop=stop_after_delay(WRITE_TIMEOUT),
    wait=wait_exponential(multiplier=0.005, max=0.1),
)
def _write_some(fd: int, data: memoryview) -> int:
    return os.write(fd, data)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class PTYSession:
    """A managed pseudo-terminal session.

    Wraps an interactive process (shell, REPL, debugger...) with:
    - Process group isolation (start_new_session) for safe tree-killing
    - The slave PTY as the child's controlling terminal
    - A ring buffer of raw output fed by a dedicated reader thread
    - Idempotent, race-free close

    The session exclusively owns the master fd and the process handle.
    The reader pump only borrows them, and close() joins the pump before
    the fd is released.
    """

    id: str
    command: list[str] = field(default_factory=list)
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    tag: str | None = None
    cols: int = 80
    rows: int = 24
    buffer_capacity: int = 65_536
    term: str = "dumb"

    # Internal state
    buffer: OutputBuffer = field(init=False)
    created_at: datetime = field(default_factory=_utcnow, init=False)
    last_activity: datetime = field(default_factory=_utcnow, init=False)
    exit_code: int | None = field(default=None, init=False)
    _state: SessionState = field(default=SessionState.STARTING, init=False)
    _closing: bool = field(default=False, init=False)
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pump: ReaderPump | None = field(default=None, init=False)
    _on_exit: Callable[[PTYSession, int | None], None] | None = field(
        default=None, init=False
    )
    # Lock order: _close_lock -> _fd_lock -> _state_lock
    _state_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _fd_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        if not self.command or not self.command[0]:
            raise InvalidArgumentError("Command must not be empty")
        validate_geometry(self.cols, self.rows)
        self.buffer = OutputBuffer(self.buffer_capacity)

    def set_on_exit(self, callback: Callable[[PTYSession, int | None], None]) -> None:
        """Set a callback invoked when the process exits on its own.

        Called from the reader thread with (session, exit_code), after the
        state has moved to EXITED. Not called when the session is closed.
        """
        self._on_exit = callback

    def start(self) -> None:
        """Spawn the process on a fresh PTY and start the reader pump."""
        if self._state is not SessionState.STARTING:
            raise RuntimeError(f"PTY session {self.id} already started")

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnFailedError(f"Failed to open PTY: {e}") from e

        env = {**os.environ, **self.env}
        env["TERM"] = self.term
        env["COLUMNS"] = str(self.cols)
        env["LINES"] = str(self.rows)

        try:
            _set_winsize(slave_fd, self.cols, self.rows)
            os.set_blocking(master_fd, False)
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
                env=env,
                cwd=self.cwd,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnFailedError(
                f"Failed to spawn {' '.join(self.command)}: {e}"
            ) from e
        finally:
            # Parent never keeps the slave; the child holds its own copies
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pump = ReaderPump(
            name=self.id,
            master_fd=master_fd,
            buffer=self.buffer,
            proc=self._proc,
            on_exit=self._handle_exit,
        )
        with self._state_lock:
            self._state = SessionState.RUNNING
        self._pump.start()

        logger.info(
            "PTY session %s started: pid=%d cmd=%s cwd=%s",
            self.id,
            self._proc.pid,
            " ".join(self.command),
            self.cwd,
        )

    def _handle_exit(self, exit_code: int | None) -> None:
        """Pump callback: the process ended without a close request."""
        with self._state_lock:
            if self._state is not SessionState.RUNNING or self._closing:
                return
            self.exit_code = exit_code
            self._state = SessionState.EXITED
        logger.info("PTY session %s exited (code=%s)", self.id, exit_code)
        if self._on_exit:
            try:
                self._on_exit(self, exit_code)
            except Exception:
                logger.exception("Error in on_exit callback for session %s", self.id)

    def send_input(self, data: bytes) -> int:
        """Write raw bytes to the terminal. No newline is added.

        Returns:
            Number of bytes written.

        Raises:
            NotRunningError: The session has exited, is closing, or is closed.
            WriteFailedError: The write failed or the input queue stayed full.
        """
        with self._fd_lock:
            with self._state_lock:
                if self._state is not SessionState.RUNNING or self._closing:
                    raise NotRunningError(self.id, self._state.value)
            view = memoryview(data)
            written = 0
            try:
                while written < len(view):
                    written += _write_some(self._master_fd, view[written:])
            except RetryError as e:
                raise WriteFailedError(
                    f"PTY input for session {self.id} stayed full for "
                    f"{WRITE_TIMEOUT}s ({written}/{len(view)} bytes written)"
                ) from e
            except OSError as e:
                raise WriteFailedError(
                    f"Failed to write to session {self.id}: {e}"
                ) from e
        self.last_activity = _utcnow()
        return written

    def read_output(self, cursor: int = 0, max_bytes: int | None = None) -> OutputRead:
        """Read buffered output from ``cursor`` on. Never blocks."""
        chunk = self.buffer.read(cursor, max_bytes)
        return OutputRead(chunk.data, chunk.cursor, chunk.dropped, self.state)

    def resize(self, cols: int, rows: int) -> None:
        """Change the terminal window size of a running session."""
        validate_geometry(cols, rows)
        with self._fd_lock:
            with self._state_lock:
                if self._state is not SessionState.RUNNING or self._closing:
                    raise NotRunningError(self.id, self._state.value)
            try:
                _set_winsize(self._master_fd, cols, rows)
            except OSError as e:
                raise WriteFailedError(
                    f"Failed to resize session {self.id}: {e}"
                ) from e
            self.cols, self.rows = cols, rows
        self.last_activity = _utcnow()

    def close(self, grace_period: float = 2.0) -> None:
        """Terminate the process and release the PTY. Idempotent.

        Hangs up the terminal (SIGHUP, then SIGTERM) and gives the process
        group ``grace_period`` seconds before SIGKILL. Concurrent callers
        block until the first close has finished.
        """
        with self._close_lock:
            with self._state_lock:
                if self._state is SessionState.CLOSED:
                    return
                self._closing = True
                was = self._state

            if self._proc is not None:
                self._terminate(grace_period)
            if self._pump is not None:
                self._pump.stop()
                if not self._pump.join(PUMP_JOIN_TIMEOUT):
                    logger.warning("Reader pump for session %s did not stop", self.id)

            with self._fd_lock:
                if self._master_fd >= 0:
                    try:
                        os.close(self._master_fd)
                    except OSError as e:
                        logger.debug("Closing master fd for %s: %s", self.id, e)
                    self._master_fd = -1
                with self._state_lock:
                    if self.exit_code is None and self._proc is not None:
                        self.exit_code = self._proc.returncode
                    self._state = SessionState.CLOSED

        logger.info(
            "PTY session %s closed (was %s, code=%s)", self.id, was.value, self.exit_code
        )

    def _terminate(self, grace_period: float) -> None:
        """Stop the process group: hangup, terminate, then kill after the grace period."""
        proc = self._proc
        assert proc is not None
        pgid = proc.pid  # start_new_session makes the child its group leader
        if proc.poll() is not None:
            # Already reaped by the pump; the pgid may no longer be ours
            return
        for sig in (signal.SIGHUP, signal.SIGTERM):
            _signal_group(pgid, sig)
        try:
            proc.wait(timeout=grace_period)
        except subprocess.TimeoutExpired:
            logger.info(
                "PTY session %s ignored SIGTERM for %.1fs, killing", self.id, grace_period
            )
        # Sweep the group: children may outlive the leader
        _signal_group(pgid, signal.SIGKILL)
        try:
            proc.wait(timeout=PUMP_JOIN_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("Process %d for session %s could not be reaped", pgid, self.id)

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def alive(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def pid(self) -> int | None:
        """Child pid, or None once the session is closed."""
        if self._proc is None or self.state is SessionState.CLOSED:
            return None
        return self._proc.pid

    def metadata(self) -> SessionMetadata:
        with self._state_lock:
            state = self._state
            exit_code = self.exit_code
        return SessionMetadata(
            id=self.id,
            tag=self.tag,
            state=state,
            command=list(self.command),
            cwd=self.cwd,
            created_at=self.created_at,
            last_activity=self.last_activity,
            pid=self.pid,
            cols=self.cols,
            rows=self.rows,
            buffered_bytes=self.buffer.occupancy,
            total_bytes=self.buffer.total_written,
            exit_code=exit_code,
        )

    def __del__(self) -> None:
        """Release OS handles if the session is garbage collected unclosed."""
        try:
            state = self._state
        except AttributeError:
            return
        if state in (SessionState.RUNNING, SessionState.EXITED):
            self.close(grace_period=0)


def _signal_group(pgid: int, sig: signal.Signals) -> None:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        logger.debug("Cannot signal process group %d: %s", pgid, e)
