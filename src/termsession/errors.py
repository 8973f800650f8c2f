"""Error kinds and exceptions raised by the session engine."""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    """Machine-readable failure categories surfaced to the tool layer."""

    NOT_FOUND = "not_found"
    NOT_RUNNING = "not_running"
    SPAWN_FAILED = "spawn_failed"
    WRITE_FAILED = "write_failed"
    TIMEOUT = "timeout"
    INVALID_ARGUMENT = "invalid_argument"


class TerminalError(Exception):
    """Base class for all session engine failures."""

    kind: ErrorKind


class NotFoundError(TerminalError):
    """No session was ever issued under the given id."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class NotRunningError(TerminalError):
    """Input was sent to a session that has exited or been closed."""

    kind = ErrorKind.NOT_RUNNING

    def __init__(self, session_id: str, state: str) -> None:
        super().__init__(f"Session {session_id} is not running (state={state})")
        self.session_id = session_id
        self.state = state


class SpawnFailedError(TerminalError):
    kind = ErrorKind.SPAWN_FAILED


class WriteFailedError(TerminalError):
    kind = ErrorKind.WRITE_FAILED


class InvalidArgumentError(TerminalError, ValueError):
    kind = ErrorKind.INVALID_ARGUMENT
