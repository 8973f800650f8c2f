"""Built-in terminal tools."""

from __future__ import annotations

from termsession.config import TermSessionConfig
from termsession.pty.registry import SessionRegistry
from termsession.tool.base import BaseTool
from termsession.tool.builtin.execute import ExecuteTool
from termsession.tool.builtin.session import (
    CloseSessionTool,
    CreateSessionTool,
    ListSessionsTool,
    ReadOutputTool,
    ResizeSessionTool,
    SendInputTool,
)


def create_terminal_tools(
    registry: SessionRegistry,
    config: TermSessionConfig | None = None,
    cwd: str | None = None,
) -> list[BaseTool]:
    """Build the execute tool plus the session tools over ``registry``."""
    config = config or TermSessionConfig()
    return [
        ExecuteTool(config=config.execute, cwd=cwd),
        CreateSessionTool(registry),
        SendInputTool(registry),
        ReadOutputTool(registry),
        ResizeSessionTool(registry),
        CloseSessionTool(registry),
        ListSessionsTool(registry),
    ]


__all__ = [
    "ExecuteTool",
    "CreateSessionTool",
    "SendInputTool",
    "ReadOutputTool",
    "ResizeSessionTool",
    "CloseSessionTool",
    "ListSessionsTool",
    "create_terminal_tools",
]
