"""Reader pump — the thread that drains a PTY master into an OutputBuffer."""

from __future__ import annotations

import errno
import logging
import os
import select
import subprocess
import threading
from typing import Callable

from termsession.pty.buffer import OutputBuffer

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
POLL_INTERVAL = 0.1  # Seconds between stop-event checks while idle

# errno values that mean the slave side is gone for good
_EOF_ERRNOS = frozenset({errno.EIO, errno.EBADF})


class ReaderPump:
    """Dedicated worker thread copying PTY output into a buffer.

    The pump borrows the master fd and the process handle from its
    session: it reads from the fd and polls the process, but never closes
    the fd or kills the process. When the stream ends it waits for the
    exit status and hands it to ``on_exit``. A ``stop()`` request makes
    the loop return at the next poll interval without reporting an exit.
    """

    def __init__(
        self,
        name: str,
        master_fd: int,
        buffer: OutputBuffer,
        proc: subprocess.Popen,
        on_exit: Callable[[int | None], None],
    ) -> None:
        self._master_fd = master_fd
        self._buffer = buffer
        self._proc = proc
        self._on_exit = on_exit
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"pty-pump-{name}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        """Ask the pump to finish; returns immediately."""
        self._stop.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the pump thread. Returns True if it has finished."""
        if self._thread.ident is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _run(self) -> None:
        try:
            self._drain()
        except Exception:
            logger.exception("Reader pump %s crashed", self._thread.name)
        if self._stop.is_set():
            return
        exit_code = self._await_exit()
        if not self._stop.is_set():
            self._on_exit(exit_code)

    def _drain(self) -> None:
        """Copy output into the buffer until EOF, a fatal error, or stop()."""
        fd = self._master_fd
        while not self._stop.is_set():
            try:
                ready, _, _ = select.select([fd], [], [], POLL_INTERVAL)
            except InterruptedError:
                continue
            except (OSError, ValueError) as e:
                logger.debug("select() on fd %d failed: %s", fd, e)
                return
            if not ready:
                continue

            try:
                data = os.read(fd, CHUNK_SIZE)
            except (BlockingIOError, InterruptedError):
                continue
            except OSError as e:
                if e.errno not in _EOF_ERRNOS:
                    logger.warning("PTY read error on fd %d: %s", fd, e)
                return

            if not data:
                return
            self._buffer.write(data)

    def _await_exit(self) -> int | None:
        """Poll for the process's exit status until it exits or stop() is called."""
        while not self._stop.is_set():
            try:
                return self._proc.wait(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                continue
        return None
