"""PTY sessions — addressable pseudo-terminals for interactive processes.

Each session runs one process on its own PTY with process group
isolation, a reader thread draining output into a ring buffer, and
idempotent cleanup.
"""

from termsession.pty.buffer import BufferRead, OutputBuffer
from termsession.pty.registry import SessionRegistry
from termsession.pty.session import (
    OutputRead,
    PTYSession,
    SessionMetadata,
    SessionState,
)

__all__ = [
    "BufferRead",
    "OutputBuffer",
    "OutputRead",
    "PTYSession",
    "SessionMetadata",
    "SessionRegistry",
    "SessionState",
]
