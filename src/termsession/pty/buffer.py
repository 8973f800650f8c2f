"""Ring buffer for PTY session output."""

from __future__ import annotations

import threading
from typing import NamedTuple

from termsession.errors import InvalidArgumentError


class BufferRead(NamedTuple):
    """Result of a cursor-based read."""

    data: bytes
    cursor: int  # Offset just past ``data`` in the total output stream
    dropped: int  # Bytes between the requested cursor and the oldest retained byte


class OutputBuffer:
    """Thread-safe fixed-capacity ring buffer of raw PTY bytes.

    Retains only the most recent ``capacity`` bytes. Every byte ever
    written is still counted in ``total_written``, so a reader's cursor
    is an offset into the whole output stream, not into the storage.

    * The reader pump is the only writer.
    * Any number of caller threads may read concurrently; reads never
      wait for new data.

    A cursor that points before the retained window reads from the
    oldest retained byte and reports how many bytes were lost. A cursor
    at or past ``total_written`` is "caught up": it returns nothing and
    comes back unchanged.
    """

    def __init__(self, capacity: int = 65_536) -> None:
        if capacity <= 0:
            raise InvalidArgumentError(
                f"Buffer capacity must be positive, got {capacity}"
            )
        self._capacity = capacity
        self._storage = bytearray(capacity)
        self._total_written = 0  # Total bytes ever written
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        """Append bytes, overwriting the oldest data when full."""
        n = len(data)
        if n == 0:
            return
        cap = self._capacity
        with self._lock:
            if n >= cap:
                # Only the last ``cap`` bytes survive; lay them out so that
                # logical offset ``o`` still lives at ``o % cap``.
                end = self._total_written + n
                tail = data[n - cap :]
                split = end % cap
                self._storage[split:] = tail[: cap - split]
                self._storage[:split] = tail[cap - split :]
            else:
                pos = self._total_written % cap
                first = min(n, cap - pos)
                self._storage[pos : pos + first] = data[:first]
                if first < n:
                    self._storage[: n - first] = data[first:]
            self._total_written += n

    def read(self, cursor: int = 0, max_bytes: int | None = None) -> BufferRead:
        """Read bytes starting at ``cursor`` without blocking.

        Args:
            cursor: Offset into the total output stream. Negative values
                are treated as 0.
            max_bytes: Upper bound on returned bytes. ``None`` returns
                everything available.

        Returns:
            A ``BufferRead`` with the data, the cursor to pass next time,
            and the number of bytes lost to overwrite.
        """
        if max_bytes is not None and max_bytes <= 0:
            raise InvalidArgumentError(f"max_bytes must be positive, got {max_bytes}")
        cursor = max(cursor, 0)
        with self._lock:
            total = self._total_written
            if cursor >= total:
                return BufferRead(b"", cursor, 0)
            window_start = max(0, total - self._capacity)
            dropped = 0
            if cursor < window_start:
                dropped = window_start - cursor
                cursor = window_start
            end = total if max_bytes is None else min(cursor + max_bytes, total)
            data = self._slice(cursor, end)
        return BufferRead(data, end, dropped)

    def tail(self, n: int) -> bytes:
        """Return the last ``n`` retained bytes (fewer if not available)."""
        with self._lock:
            total = self._total_written
            start = max(total - min(n, self._capacity, total), 0)
            return self._slice(start, total)

    def _slice(self, start: int, end: int) -> bytes:
        """Copy logical range [start, end) out of the ring. Caller holds the lock."""
        if end <= start:
            return b""
        cap = self._capacity
        lo = start % cap
        hi = lo + (end - start)
        if hi <= cap:
            return bytes(self._storage[lo:hi])
        return bytes(self._storage[lo:]) + bytes(self._storage[: hi - cap])

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_written(self) -> int:
        """Total number of bytes ever written."""
        with self._lock:
            return self._total_written

    @property
    def occupancy(self) -> int:
        """Number of bytes currently retained."""
        with self._lock:
            return min(self._total_written, self._capacity)
