"""Session tools — drive interactive PTY sessions through the registry.

All session tools share one SessionRegistry. Blocking engine calls
(spawn, close) run in a worker thread so the event loop stays free;
reads and input writes are short enough to call inline.
"""

from __future__ import annotations

import asyncio
import json
from typing import ClassVar

from pydantic import BaseModel, Field

from termsession.pty.registry import SessionRegistry
from termsession.pty.session import SessionState
from termsession.tool.base import BaseTool, ToolOk, ToolResult
from termsession.tool.truncation import decode_output, incomplete_utf8_tail, strip_ansi

DEFAULT_READ_BYTES = 16 * 1024


class _SessionTool:
    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry


# ---------------------------------------------------------------------------
# create_session
# ---------------------------------------------------------------------------


class CreateSessionParams(BaseModel):
    command: str | None = Field(
        default=None,
        description="Program to run in the terminal. Defaults to the user's shell ($SHELL).",
    )
    args: list[str] = Field(default_factory=list, description="Program arguments.")
    working_dir: str | None = Field(
        default=None, description="Working directory. Defaults to the server's cwd."
    )
    cols: int | None = Field(default=None, gt=0, description="Terminal width (default 80).")
    rows: int | None = Field(default=None, gt=0, description="Terminal height (default 24).")
    tag: str | None = Field(
        default=None, description="Free-form label, e.g. a project name, for filtering."
    )
    buffer_size: int | None = Field(
        default=None,
        gt=0,
        description="Bytes of output retained (default 65536). Older output is dropped.",
    )


class CreateSessionTool(_SessionTool, BaseTool[CreateSessionParams]):
    name: ClassVar[str] = "create_session"
    description: ClassVar[str] = (
        "Create a new interactive terminal session backed by a PTY. Returns a "
        "session_id for send_input/read_output/close_session. Use for shells, "
        "REPLs and long-running or interactive commands."
    )
    param_model: ClassVar[type[BaseModel]] = CreateSessionParams

    async def execute(self, params: CreateSessionParams) -> ToolResult:
        session_id = await asyncio.to_thread(
            self._registry.create,
            params.command,
            params.args,
            working_dir=params.working_dir,
            cols=params.cols,
            rows=params.rows,
            tag=params.tag,
            buffer_capacity=params.buffer_size,
        )
        return ToolOk(
            output=json.dumps({"session_id": session_id}),
            brief=f"Created {session_id}",
        )


# ---------------------------------------------------------------------------
# send_input
# ---------------------------------------------------------------------------


class SendInputParams(BaseModel):
    session_id: str = Field(description="Session ID returned by create_session.")
    input: str = Field(
        description="Text written to the terminal verbatim. Include \\n to press Enter, "
        "\\u0003 for Ctrl-C, \\u0004 for Ctrl-D."
    )


class SendInputTool(_SessionTool, BaseTool[SendInputParams]):
    name: ClassVar[str] = "send_input"
    description: ClassVar[str] = (
        "Send input to an interactive terminal session. Nothing is added: "
        "include a newline character to submit a command."
    )
    param_model: ClassVar[type[BaseModel]] = SendInputParams

    async def execute(self, params: SendInputParams) -> ToolResult:
        session = self._registry.get(params.session_id)
        written = session.send_input(params.input.encode("utf-8"))
        return ToolOk(
            output=json.dumps({"ok": True, "bytes_written": written}),
            brief=f"{written} bytes -> {params.session_id}",
        )


# ---------------------------------------------------------------------------
# read_output
# ---------------------------------------------------------------------------


class ReadOutputParams(BaseModel):
    session_id: str = Field(description="Session ID returned by create_session.")
    cursor: int = Field(
        default=0,
        ge=0,
        description="Byte offset to read from. Pass the cursor returned by the "
        "previous read to get only new output.",
    )
    max_bytes: int = Field(
        default=DEFAULT_READ_BYTES, gt=0, description="Maximum bytes to return."
    )
    strip_ansi: bool = Field(
        default=False,
        description="Remove ANSI escape sequences and carriage returns from the text.",
    )


class ReadOutputTool(_SessionTool, BaseTool[ReadOutputParams]):
    name: ClassVar[str] = "read_output"
    description: ClassVar[str] = (
        "Read output from a terminal session without waiting. Returns the text, "
        "the cursor to pass on the next call, dropped_bytes (output lost because "
        "it was overwritten before being read) and the session state "
        "(running, exited or closed)."
    )
    param_model: ClassVar[type[BaseModel]] = ReadOutputParams

    async def execute(self, params: ReadOutputParams) -> ToolResult:
        session = self._registry.get(params.session_id)
        chunk = session.read_output(params.cursor, params.max_bytes)
        data, cursor = chunk.data, chunk.cursor
        # Hand back a split multi-byte character on the next read instead of
        # decoding half of it. Output that ends mid-character for good is
        # returned as is.
        held = incomplete_utf8_tail(data)
        if 0 < held < len(data) and (
            chunk.state is SessionState.RUNNING or cursor < session.buffer.total_written
        ):
            data, cursor = data[:-held], cursor - held
        text = decode_output(data)
        if params.strip_ansi:
            text = strip_ansi(text)
        payload = {
            "data": text,
            "cursor": cursor,
            "dropped_bytes": chunk.dropped,
            "state": chunk.state.value,
        }
        if session.exit_code is not None:
            payload["exit_code"] = session.exit_code
        return ToolOk(
            output=json.dumps(payload, ensure_ascii=False),
            brief=f"{len(data)} bytes from {params.session_id}",
        )


# ---------------------------------------------------------------------------
# resize_session
# ---------------------------------------------------------------------------


class ResizeSessionParams(BaseModel):
    session_id: str = Field(description="Session ID returned by create_session.")
    cols: int = Field(gt=0, description="New terminal width.")
    rows: int = Field(gt=0, description="New terminal height.")


class ResizeSessionTool(_SessionTool, BaseTool[ResizeSessionParams]):
    name: ClassVar[str] = "resize_session"
    description: ClassVar[str] = "Change the window size of a running terminal session."
    param_model: ClassVar[type[BaseModel]] = ResizeSessionParams

    async def execute(self, params: ResizeSessionParams) -> ToolResult:
        self._registry.get(params.session_id).resize(params.cols, params.rows)
        return ToolOk(output=json.dumps({"ok": True}))


# ---------------------------------------------------------------------------
# close_session
# ---------------------------------------------------------------------------


class CloseSessionParams(BaseModel):
    session_id: str = Field(description="Session ID returned by create_session.")


class CloseSessionTool(_SessionTool, BaseTool[CloseSessionParams]):
    name: ClassVar[str] = "close_session"
    description: ClassVar[str] = (
        "Close a terminal session: hang up the terminal, terminate the process "
        "and release the PTY. Closing an already closed session succeeds."
    )
    param_model: ClassVar[type[BaseModel]] = CloseSessionParams

    async def execute(self, params: CloseSessionParams) -> ToolResult:
        await asyncio.to_thread(self._registry.close, params.session_id)
        return ToolOk(output=json.dumps({"ok": True}), brief=f"Closed {params.session_id}")


# ---------------------------------------------------------------------------
# list_sessions
# ---------------------------------------------------------------------------


class ListSessionsParams(BaseModel):
    tag: str | None = Field(default=None, description="Only list sessions with this tag.")


class ListSessionsTool(_SessionTool, BaseTool[ListSessionsParams]):
    name: ClassVar[str] = "list_sessions"
    description: ClassVar[str] = (
        "List open terminal sessions (running or exited but not yet closed), "
        "oldest first. Optionally filter by tag."
    )
    param_model: ClassVar[type[BaseModel]] = ListSessionsParams

    async def execute(self, params: ListSessionsParams) -> ToolResult:
        sessions = self._registry.list(tag=params.tag)
        return ToolOk(
            output=json.dumps({"sessions": [m.to_dict() for m in sessions]}),
            brief=f"{len(sessions)} sessions",
        )
