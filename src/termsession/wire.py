"""Wire — broadcast of session lifecycle events to async subscribers.

The registry sends events; adapters (the stdio loop, a UI) subscribe and
react. Exit events originate on reader-pump threads, so once a loop is
attached, sends from other threads are marshalled onto it.
"""

from __future__ import annotations

import asyncio
import enum
import threading
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_CREATED = "session_created"
    SESSION_EXIT = "session_exit"
    SESSION_CLOSED = "session_closed"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Message bus: session registry -> subscribers.

    Multi-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: int | None = None

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Bind the wire to the event loop its subscribers run on.

        Must be called from the loop's thread.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        loop = self._loop
        if loop is not None and threading.get_ident() != self._loop_thread:
            if not loop.is_closed():
                loop.call_soon_threadsafe(self._dispatch, event)
            return
        self._dispatch(event)

    def _dispatch(self, event: WireEvent) -> None:
        if self._closed:
            return
        for q in list(self._subscribers):
            q.put_nowait(event)

    def send_session_created(
        self, session_id: str, tag: str | None, command: list[str]
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_CREATED,
                data={"session_id": session_id, "tag": tag, "command": " ".join(command)},
            )
        )

    def send_session_exit(
        self,
        session_id: str,
        tag: str | None,
        exit_code: int | None,
        last_output: str = "",
    ) -> None:
        """Notify subscribers that a session's process exited on its own."""
        self.send(
            WireEvent(
                type=EventType.SESSION_EXIT,
                data={
                    "session_id": session_id,
                    "tag": tag,
                    "exit_code": exit_code,
                    "last_output": last_output[-500:],
                },
            )
        )

    def send_session_closed(self, session_id: str, exit_code: int | None) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_CLOSED,
                data={"session_id": session_id, "exit_code": exit_code},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
