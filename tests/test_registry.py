"""Tests for termsession.pty.registry.SessionRegistry."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable

import pytest

from termsession.config import SessionConfig
from termsession.errors import (
    InvalidArgumentError,
    NotFoundError,
    NotRunningError,
    SpawnFailedError,
)
from termsession.pty.registry import SessionRegistry
from termsession.pty.session import PTYSession, SessionState
from termsession.tool.truncation import strip_ansi
from termsession.wire import EventType, Wire


class TestRegistryCreate:
    def test_ids_are_unique_and_resolvable(self, registry: SessionRegistry) -> None:
        ids = [registry.create("cat") for _ in range(3)]
        assert ids == ["s1", "s2", "s3"]
        for session_id in ids:
            assert registry.get(session_id).id == session_id
        assert len(registry) == 3

    def test_ids_not_reused_after_close(self, registry: SessionRegistry) -> None:
        first = registry.create("cat")
        registry.close(first)
        second = registry.create("cat")
        assert second != first

    def test_defaults_from_config(self, registry: SessionRegistry) -> None:
        session = registry.get(registry.create("cat"))
        assert (session.cols, session.rows) == (80, 24)
        assert session.buffer.capacity == 65_536

    def test_default_command_is_shell(
        self, registry: SessionRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SHELL", "/bin/sh")
        session = registry.get(registry.create())
        assert session.command == ["/bin/sh"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"command": ""},
            {"command": "   "},
            {"command": "cat", "buffer_capacity": 0},
            {"command": "cat", "buffer_capacity": -5},
            {"command": "cat", "cols": 0},
            {"command": "cat", "rows": -1},
        ],
    )
    def test_invalid_arguments_leave_registry_unchanged(
        self, registry: SessionRegistry, kwargs: dict
    ) -> None:
        with pytest.raises(InvalidArgumentError):
            registry.create(**kwargs)
        assert len(registry) == 0
        assert registry.list() == []

    def test_spawn_failure(self, registry: SessionRegistry) -> None:
        with pytest.raises(SpawnFailedError):
            registry.create("/nonexistent/definitely-not-a-binary")
        assert len(registry) == 0
        assert registry.list() == []

    def test_missing_working_dir(self, registry: SessionRegistry, tmp_path) -> None:
        with pytest.raises(SpawnFailedError):
            registry.create("cat", working_dir=str(tmp_path / "missing"))
        assert len(registry) == 0

    def test_session_limit(self) -> None:
        with SessionRegistry(SessionConfig(max_sessions=2, close_grace_period=0.5)) as reg:
            reg.create("cat")
            second = reg.create("cat")
            with pytest.raises(SpawnFailedError, match="limit"):
                reg.create("cat")
            reg.close(second)
            reg.create("cat")
            assert len(reg) == 2


class TestRegistryLookupAndClose:
    def test_get_unknown(self, registry: SessionRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.get("s42")

    def test_close_unknown(self, registry: SessionRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.close("bogus")

    def test_close_then_send_and_close_again(self, registry: SessionRegistry) -> None:
        session_id = registry.create("cat")
        registry.close(session_id)
        with pytest.raises(NotRunningError):
            registry.get(session_id).send_input(b"hello\n")
        registry.close(session_id)  # No-op
        assert registry.get(session_id).state is SessionState.CLOSED
        assert session_id not in registry

    def test_closed_retention_eviction(self) -> None:
        config = SessionConfig(closed_retention=1, close_grace_period=0.5)
        with SessionRegistry(config) as reg:
            first = reg.create("cat")
            second = reg.create("cat")
            reg.close(first)
            reg.close(second)
            with pytest.raises(NotFoundError):
                reg.get(first)
            assert reg.get(second).state is SessionState.CLOSED
            reg.close(first)  # Still a no-op: the id was issued and closed

    def test_concurrent_close_same_id(self, registry: SessionRegistry) -> None:
        session_id = registry.create("cat")
        errors: list[Exception] = []

        def _close() -> None:
            try:
                registry.close(session_id)
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=_close) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert not errors
        assert registry.get(session_id).state is SessionState.CLOSED
        assert registry.list() == []


class TestRegistryList:
    def test_empty(self, registry: SessionRegistry) -> None:
        assert registry.list() == []

    def test_ordered_by_creation(self, registry: SessionRegistry) -> None:
        ids = [registry.create("cat", tag=f"t{i}") for i in range(3)]
        assert [m.id for m in registry.list()] == ids

    def test_filter_by_tag(self, registry: SessionRegistry) -> None:
        registry.create("cat", tag="alpha")
        beta = registry.create("cat", tag="beta")
        assert [m.id for m in registry.list(tag="beta")] == [beta]
        assert registry.list(tag="missing") == []

    def test_exited_sessions_stay_listed(
        self, registry: SessionRegistry, poll: Callable[..., bool]
    ) -> None:
        session_id = registry.create("sh", ["-c", "exit 7"])
        assert poll(lambda: registry.list()[0].state is SessionState.EXITED)
        meta = registry.list()[0]
        assert meta.id == session_id
        assert meta.exit_code == 7
        registry.close(session_id)
        assert registry.list() == []

    def test_bash_scenario(
        self, registry: SessionRegistry, poll: Callable[..., bool]
    ) -> None:
        session_id = registry.create("bash", ["--norc", "--noprofile"], cols=80, rows=24)
        session = registry.get(session_id)
        session.send_input(b"echo hi\n")

        def _text() -> str:
            return strip_ansi(session.read_output(0).data.decode("utf-8", "replace"))

        # The terminal echoes the command line, then bash prints the result
        assert poll(lambda: "\nhi\n" in _text())
        assert session.read_output(0).cursor > 0

        listed = registry.list()
        assert [(m.id, m.state) for m in listed] == [(session_id, SessionState.RUNNING)]

        registry.close(session_id)
        assert registry.list() == []


class TestRegistryShutdown:
    def test_shutdown_closes_everything(self, session_config: SessionConfig) -> None:
        reg = SessionRegistry(session_config)
        sessions = [reg.get(reg.create("cat")) for _ in range(3)]
        reg.shutdown()
        assert len(reg) == 0
        assert all(s.state is SessionState.CLOSED for s in sessions)

    def test_create_after_shutdown_refused(self, session_config: SessionConfig) -> None:
        reg = SessionRegistry(session_config)
        reg.shutdown()
        with pytest.raises(SpawnFailedError, match="shut down"):
            reg.create("cat")
        assert len(reg) == 0

    def test_shutdown_closes_in_flight_create(
        self, session_config: SessionConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        spawning = threading.Event()
        release = threading.Event()
        original_start = PTYSession.start

        def _slow_start(session: PTYSession) -> None:
            spawning.set()
            release.wait(timeout=5)
            original_start(session)

        monkeypatch.setattr(PTYSession, "start", _slow_start)
        reg = SessionRegistry(session_config)
        created: list[str] = []
        creator = threading.Thread(target=lambda: created.append(reg.create("cat")))
        creator.start()
        assert spawning.wait(timeout=5)

        stopper = threading.Thread(target=reg.shutdown)
        stopper.start()
        time.sleep(0.1)
        assert stopper.is_alive()  # Waiting for the spawn to finish
        release.set()
        creator.join(timeout=10)
        stopper.join(timeout=10)

        assert not stopper.is_alive()
        assert created == ["s1"]
        assert reg.get("s1").state is SessionState.CLOSED
        assert len(reg) == 0

    def test_context_manager(self, session_config: SessionConfig) -> None:
        with SessionRegistry(session_config) as reg:
            session = reg.get(reg.create("cat"))
        assert session.state is SessionState.CLOSED


class TestRegistryEvents:
    async def test_lifecycle_events(self, session_config: SessionConfig) -> None:
        wire = Wire()
        wire.attach_loop()
        queue = wire.subscribe()
        reg = SessionRegistry(session_config, wire=wire)
        try:
            session_id = await asyncio.to_thread(
                reg.create, "sh", ["-c", "printf bye"], tag="job"
            )
            # Exit of a short-lived process may race the creation event
            events = {}
            for _ in range(2):
                event = await asyncio.wait_for(queue.get(), timeout=5)
                events[event.type] = event.data
            assert events[EventType.SESSION_CREATED]["session_id"] == session_id
            exited = events[EventType.SESSION_EXIT]
            assert exited["session_id"] == session_id
            assert exited["exit_code"] == 0
            assert exited["tag"] == "job"
            assert exited["last_output"] == "bye"

            await asyncio.to_thread(reg.close, session_id)
            closed = await asyncio.wait_for(queue.get(), timeout=5)
            assert closed.type is EventType.SESSION_CLOSED
        finally:
            await asyncio.to_thread(reg.shutdown)
