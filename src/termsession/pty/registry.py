"""Session registry — owns every PTY session by id."""

from __future__ import annotations

import itertools
import logging
import os
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING

from termsession.config import SessionConfig
from termsession.errors import (
    InvalidArgumentError,
    NotFoundError,
    SpawnFailedError,
)
from termsession.pty.session import PTYSession, SessionMetadata, validate_geometry

if TYPE_CHECKING:
    from termsession.wire import Wire

logger = logging.getLogger(__name__)

MAX_BUFFER_CAPACITY = 64 * 1024 * 1024


def default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/bash"


class SessionRegistry:
    """Tracks the lifecycle of interactive PTY sessions.

    - Ids are ``s1``, ``s2``, ... and never reused for the registry's lifetime
    - Sessions that exit on their own stay listed (state ``exited``) until
      closed
    - Closing removes a session from ``list()``; the closed session is kept
      in a bounded retention table so ``get()`` and ``read_output`` still
      work on it
    - The membership lock only guards the tables, never session I/O, so
      unrelated sessions never wait on each other
    - Exit, create and close notifications are sent via Wire (if attached)

    Construct one explicitly and call ``shutdown()`` (or use it as a
    context manager) to close everything on exit.
    """

    ID_PREFIX = "s"

    def __init__(
        self,
        config: SessionConfig | None = None,
        wire: Wire | None = None,
    ) -> None:
        self._config = config or SessionConfig()
        self._wire = wire
        self._live: dict[str, PTYSession] = {}
        self._closed: OrderedDict[str, PTYSession] = OrderedDict()
        self._retired: set[str] = set()  # Every id ever closed
        self._counter = itertools.count(1)
        self._pending = 0  # Creations between id issue and insertion
        self._shutting_down = False
        self._lock = threading.Lock()
        self._settled = threading.Condition(self._lock)  # Notified when _pending drops

    @property
    def config(self) -> SessionConfig:
        return self._config

    def create(
        self,
        command: str | None = None,
        args: list[str] | tuple[str, ...] = (),
        working_dir: str | None = None,
        cols: int | None = None,
        rows: int | None = None,
        tag: str | None = None,
        buffer_capacity: int | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """Spawn a new PTY session and return its id.

        Args:
            command: Executable to run. ``None`` runs the user's shell.
            args: Arguments passed to the command.
            working_dir: Working directory. Defaults to the current one.
            cols: Initial terminal width.
            rows: Initial terminal height.
            tag: Free-form label for the caller's own bookkeeping.
            buffer_capacity: Bytes of output retained.
            env: Additional environment variables.

        Raises:
            InvalidArgumentError: Empty command, bad capacity or geometry.
            SpawnFailedError: PTY or process creation failed, or the live
                session limit was reached. No entry is left behind.
        """
        cfg = self._config
        if command is None:
            command = cfg.shell or default_shell()
        if not command.strip():
            raise InvalidArgumentError("Command must not be empty")
        capacity = cfg.buffer_size if buffer_capacity is None else buffer_capacity
        if not 0 < capacity <= MAX_BUFFER_CAPACITY:
            raise InvalidArgumentError(
                f"Buffer capacity must be between 1 and {MAX_BUFFER_CAPACITY}, got {capacity}"
            )
        cols = cfg.cols if cols is None else cols
        rows = cfg.rows if rows is None else rows
        validate_geometry(cols, rows)
        cwd = working_dir or os.getcwd()
        if not os.path.isdir(cwd):
            raise SpawnFailedError(f"Working directory does not exist: {cwd}")

        with self._lock:
            if self._shutting_down:
                raise SpawnFailedError("Session registry is shut down")
            if len(self._live) + self._pending >= cfg.max_sessions:
                raise SpawnFailedError(
                    f"Session limit reached ({cfg.max_sessions} live sessions)"
                )
            session_id = f"{self.ID_PREFIX}{next(self._counter)}"
            self._pending += 1

        try:
            session = PTYSession(
                id=session_id,
                command=[command, *args],
                cwd=cwd,
                env=env or {},
                tag=tag,
                cols=cols,
                rows=rows,
                buffer_capacity=capacity,
                term=cfg.term,
            )
            if self._wire:
                session.set_on_exit(self._notify_exit)
            session.start()
        except BaseException:
            with self._lock:
                self._pending -= 1
                self._settled.notify_all()
            raise

        with self._lock:
            self._pending -= 1
            self._live[session_id] = session
            self._settled.notify_all()

        if self._wire:
            self._wire.send_session_created(session_id, tag, session.command)
        return session_id

    def _notify_exit(self, session: PTYSession, exit_code: int | None) -> None:
        if self._wire is None:
            return
        tail = session.buffer.tail(500).decode("utf-8", errors="replace")
        self._wire.send_session_exit(session.id, session.tag, exit_code, tail)

    def get(self, session_id: str) -> PTYSession:
        """Look up a live or recently closed session.

        Raises:
            NotFoundError: Unknown id, or a closed session no longer retained.
        """
        with self._lock:
            session = self._live.get(session_id) or self._closed.get(session_id)
        if session is None:
            raise NotFoundError(session_id)
        return session

    def close(self, session_id: str) -> None:
        """Close a session. Closing an already-closed session is a no-op.

        Raises:
            NotFoundError: The id was never issued by this registry.
        """
        with self._lock:
            session = self._live.get(session_id)
            if session is None:
                if session_id in self._retired:
                    return
                raise NotFoundError(session_id)

        session.close(self._config.close_grace_period)

        with self._lock:
            if self._live.pop(session_id, None) is None:
                return  # A concurrent close already retired it
            self._closed[session_id] = session
            self._retired.add(session_id)
            while len(self._closed) > self._config.closed_retention:
                evicted, _ = self._closed.popitem(last=False)
                logger.debug("Dropped closed session %s from retention", evicted)

        if self._wire:
            self._wire.send_session_closed(session_id, session.exit_code)

    def list(self, tag: str | None = None) -> list[SessionMetadata]:
        """Snapshot of every live (running or exited) session, oldest first."""
        with self._lock:
            sessions = list(self._live.values())
        return [
            s.metadata() for s in sessions if tag is None or s.tag == tag
        ]

    def shutdown(self) -> None:
        """Close every live session and refuse new ones. Called on process exit.

        Creations already spawning when shutdown starts are waited for and
        closed as well.
        """
        with self._lock:
            self._shutting_down = True
            self._settled.wait_for(lambda: self._pending == 0)
            session_ids = list(self._live)
        for session_id in session_ids:
            try:
                self.close(session_id)
            except Exception:
                logger.exception("Failed to close session %s during shutdown", session_id)
        logger.info("All PTY sessions cleaned up (%d closed)", len(session_ids))

    def __enter__(self) -> SessionRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._live
