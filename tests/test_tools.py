"""Tests for the tool layer: ToolRegistry dispatch over the built-in terminal tools."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from termsession.config import ExecuteConfig, TermSessionConfig
from termsession.pty.registry import SessionRegistry
from termsession.tool.builtin import ExecuteTool, create_terminal_tools
from termsession.tool.registry import ToolRegistry

TOOL_NAMES = {
    "execute",
    "create_session",
    "send_input",
    "read_output",
    "resize_session",
    "close_session",
    "list_sessions",
}


@pytest.fixture
def tools(registry: SessionRegistry, tmp_path) -> ToolRegistry:
    reg = ToolRegistry()
    reg.register_many(create_terminal_tools(registry, TermSessionConfig(), cwd=str(tmp_path)))
    return reg


async def _call(tools: ToolRegistry, name: str, **arguments: Any) -> dict[str, Any]:
    content, is_error = await tools.dispatch(name, arguments)
    assert not is_error, content
    return json.loads(content)


async def _read_until(
    tools: ToolRegistry, session_id: str, needle: str, timeout: float = 5.0
) -> str:
    text = ""
    cursor = 0
    deadline = asyncio.get_running_loop().time() + timeout
    while needle not in text:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"{needle!r} not seen in {text!r}")
        out = await _call(
            tools, "read_output", session_id=session_id, cursor=cursor, strip_ansi=True
        )
        text += out["data"]
        cursor = out["cursor"]
        await asyncio.sleep(0.05)
    return text


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_all_tools_registered(self, tools: ToolRegistry) -> None:
        assert set(tools.names()) == TOOL_NAMES
        assert len(tools.names()) == 7

    def test_specs(self, tools: ToolRegistry) -> None:
        specs = tools.get_specs()
        assert {s["function"]["name"] for s in specs} == TOOL_NAMES
        for spec in specs:
            assert spec["type"] == "function"
            assert spec["function"]["description"]
            assert "title" not in spec["function"]["parameters"]

    async def test_unknown_tool(self, tools: ToolRegistry) -> None:
        content, is_error = await tools.dispatch("rm_rf", {})
        assert is_error
        assert "Unknown tool: rm_rf" in content

    async def test_invalid_parameters(self, tools: ToolRegistry) -> None:
        content, is_error = await tools.dispatch("send_input", {"session_id": "s1"})
        assert is_error
        assert content.startswith("Invalid parameters")

    async def test_non_positive_geometry_rejected(self, tools: ToolRegistry) -> None:
        content, is_error = await tools.dispatch("create_session", {"command": "cat", "cols": 0})
        assert is_error
        assert content.startswith("Invalid parameters")


# ---------------------------------------------------------------------------
# Session tools
# ---------------------------------------------------------------------------


class TestSessionTools:
    async def test_full_flow(self, tools: ToolRegistry) -> None:
        created = await _call(tools, "create_session", command="cat", tag="demo")
        session_id = created["session_id"]

        sent = await _call(tools, "send_input", session_id=session_id, input="hello\n")
        assert sent == {"ok": True, "bytes_written": 6}
        assert "hello" in await _read_until(tools, session_id, "hello\nhello\n")

        listed = await _call(tools, "list_sessions", tag="demo")
        assert [s["id"] for s in listed["sessions"]] == [session_id]
        assert listed["sessions"][0]["state"] == "running"

        assert await _call(tools, "resize_session", session_id=session_id, cols=100, rows=40) == {
            "ok": True
        }
        assert await _call(tools, "close_session", session_id=session_id) == {"ok": True}
        assert (await _call(tools, "list_sessions"))["sessions"] == []

        # Closing again succeeds; reads still see the final state
        assert await _call(tools, "close_session", session_id=session_id) == {"ok": True}
        final = await _call(tools, "read_output", session_id=session_id)
        assert final["state"] == "closed"

    async def test_unknown_session(self, tools: ToolRegistry) -> None:
        for name, args in [
            ("send_input", {"session_id": "nope", "input": "x"}),
            ("read_output", {"session_id": "nope"}),
            ("resize_session", {"session_id": "nope", "cols": 10, "rows": 10}),
            ("close_session", {"session_id": "nope"}),
        ]:
            content, is_error = await tools.dispatch(name, args)
            assert is_error
            assert content.startswith("ERROR [not_found]"), content

    async def test_send_to_exited_session(self, tools: ToolRegistry) -> None:
        session_id = (await _call(tools, "create_session", command="sh", args=["-c", "exit 2"]))[
            "session_id"
        ]
        for _ in range(100):
            out = await _call(tools, "read_output", session_id=session_id)
            if out["state"] == "exited":
                break
            await asyncio.sleep(0.05)
        assert out["state"] == "exited"
        assert out["exit_code"] == 2

        content, is_error = await tools.dispatch(
            "send_input", {"session_id": session_id, "input": "x"}
        )
        assert is_error
        assert content.startswith("ERROR [not_running]")

    async def test_spawn_failure(self, tools: ToolRegistry) -> None:
        content, is_error = await tools.dispatch(
            "create_session", {"command": "/nonexistent/definitely-not-a-binary"}
        )
        assert is_error
        assert content.startswith("ERROR [spawn_failed]")

    async def test_read_output_strip_ansi(self, tools: ToolRegistry) -> None:
        session_id = (
            await _call(
                tools,
                "create_session",
                command="sh",
                args=["-c", "printf '\\033[31mred\\033[0m\\n'; sleep 30"],
            )
        )["session_id"]
        text = await _read_until(tools, session_id, "red\n")
        assert "\x1b" not in text
        raw = await _call(tools, "read_output", session_id=session_id)
        assert "\x1b[31m" in raw["data"]

    @pytest.mark.parametrize("max_bytes", [3, 5, 7])
    async def test_read_output_never_splits_characters(
        self, tools: ToolRegistry, max_bytes: int
    ) -> None:
        expected = "ééééé€€ü"
        session_id = (
            await _call(
                tools, "create_session", command="sh", args=["-c", f"printf '{expected}'"]
            )
        )["session_id"]
        for _ in range(100):
            out = await _call(tools, "read_output", session_id=session_id, max_bytes=1)
            if out["state"] == "exited":
                break
            await asyncio.sleep(0.05)
        assert out["state"] == "exited"

        pieces: list[str] = []
        cursor = 0
        while True:
            out = await _call(
                tools, "read_output", session_id=session_id, cursor=cursor, max_bytes=max_bytes
            )
            if not out["data"]:
                break
            assert "�" not in out["data"]
            pieces.append(out["data"])
            cursor = out["cursor"]
        assert "".join(pieces) == expected
        assert cursor == len(expected.encode())


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


class TestExecuteTool:
    async def test_success(self, tools: ToolRegistry) -> None:
        out = await _call(tools, "execute", command="sh", args=["-c", "echo out; echo err >&2"])
        assert out["stdout"] == "out\n"
        assert out["stderr"] == "err\n"
        assert out["exit_code"] == 0
        assert out["timed_out"] is False
        assert "error" not in out

    async def test_nonzero_exit_is_not_a_tool_error(self, tools: ToolRegistry) -> None:
        out = await _call(tools, "execute", command="sh", args=["-c", "exit 5"])
        assert out["exit_code"] == 5

    async def test_default_cwd(self, tools: ToolRegistry, tmp_path) -> None:
        out = await _call(tools, "execute", command="pwd")
        assert out["stdout"].strip() == str(tmp_path.resolve())

    async def test_timeout(self, tools: ToolRegistry) -> None:
        content, is_error = await tools.dispatch(
            "execute",
            {"command": "sh", "args": ["-c", "echo early; sleep 10"], "timeout_ms": 300},
        )
        assert is_error
        out = json.loads(content)
        assert out["timed_out"] is True
        assert out["stdout"] == "early\n"
        assert out["error"].startswith("timeout")

    async def test_missing_command(self, tools: ToolRegistry) -> None:
        content, is_error = await tools.dispatch(
            "execute", {"command": "/nonexistent/definitely-not-a-binary"}
        )
        assert is_error
        assert content.startswith("ERROR [spawn_failed]")

    async def test_output_truncated(self, tmp_path) -> None:
        tool = ExecuteTool(ExecuteConfig(max_output_bytes=10), cwd=str(tmp_path))
        content, is_error = await tool({"command": "printf", "args": ["0123456789abcdef"]})
        assert not is_error
        out = json.loads(content)
        assert out["stdout"] == "6789abcdef"
        assert out["truncated"] == {"stdout": 6, "stderr": 0}
