"""Output shaping — bound and clean command output before it reaches the caller."""

from __future__ import annotations

import re

MAX_BYTES = 50 * 1024  # 50KB

# CSI sequences, OSC sequences (BEL or ST terminated), and charset designations
_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[()][0-9A-Za-z]"
)


def decode_output(data: bytes) -> str:
    """Decode raw terminal bytes as UTF-8, replacing invalid sequences."""
    return data.decode("utf-8", errors="replace")


def incomplete_utf8_tail(data: bytes) -> int:
    """Length of a trailing UTF-8 sequence whose remaining bytes are missing.

    Returns 0 when ``data`` ends on a character boundary.
    """
    for back in range(1, min(4, len(data)) + 1):
        byte = data[-back]
        if byte & 0xC0 == 0x80:  # Continuation byte, keep looking for the lead
            continue
        if byte >= 0xF0:
            needed = 4
        elif byte >= 0xE0:
            needed = 3
        elif byte >= 0xC0:
            needed = 2
        else:
            return 0
        return back if back < needed else 0
    return 0


def truncate_output(data: bytes, max_bytes: int = MAX_BYTES) -> tuple[bytes, int]:
    """Keep the tail of ``data`` within ``max_bytes``.

    Errors tend to be at the end, so the head is what gets dropped.

    Returns:
        (kept bytes, number of bytes skipped)
    """
    if len(data) <= max_bytes:
        return data, 0
    skipped = len(data) - max_bytes
    return data[skipped:], skipped


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences and carriage returns from text."""
    return _ANSI_RE.sub("", text).replace("\r", "")
