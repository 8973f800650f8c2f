"""Shared fixtures for session tests."""

from __future__ import annotations

import time
from typing import Callable, Iterator

import pytest

from termsession.config import SessionConfig
from termsession.pty.registry import SessionRegistry
from termsession.pty.session import PTYSession


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(close_grace_period=0.5, max_sessions=8, closed_retention=4)


@pytest.fixture
def registry(session_config: SessionConfig) -> Iterator[SessionRegistry]:
    """A registry that closes whatever the test left open."""
    reg = SessionRegistry(config=session_config)
    yield reg
    reg.shutdown()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def read_until(session: PTYSession, needle: bytes, timeout: float = 5.0) -> bytes:
    """Poll a session from cursor 0 until ``needle`` shows up in its output."""
    output = b""
    cursor = 0

    def _poll() -> bool:
        nonlocal output, cursor
        chunk = session.read_output(cursor)
        output += chunk.data
        cursor = chunk.cursor
        return needle in output

    wait_until(_poll, timeout)
    return output


@pytest.fixture
def poll() -> Callable[..., bool]:
    return wait_until


@pytest.fixture
def read_session() -> Callable[..., bytes]:
    return read_until
