"""Execute tool — run a one-off command to completion on pipes.

No PTY and no persistent state: use the session tools for anything
interactive or long-running.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import ClassVar

from pydantic import BaseModel, Field

from termsession.config import ExecuteConfig
from termsession.executor import execute
from termsession.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from termsession.tool.truncation import decode_output, truncate_output


class ExecuteParams(BaseModel):
    command: str = Field(description="Executable to run, or a script when shell=true.")
    args: list[str] = Field(default_factory=list, description="Command arguments.")
    working_dir: str | None = Field(
        default=None, description="Working directory. Defaults to the server's cwd."
    )
    timeout_ms: int | None = Field(
        default=None,
        gt=0,
        description="Kill the command after this many milliseconds. "
        "Omit to wait for completion.",
    )
    shell: bool = Field(
        default=False,
        description="Run the command string through the user's shell ($SHELL -c).",
    )


class ExecuteTool(BaseTool[ExecuteParams]):
    """Run a command synchronously and return its stdout, stderr and exit code.

    A timeout kills the whole process group and still returns the output
    captured before the kill.
    """

    name: ClassVar[str] = "execute"
    description: ClassVar[str] = (
        "Execute a command synchronously. Waits for completion and returns "
        "stdout, stderr and the exit code. Use for simple one-off commands; "
        "use create_session for interactive or long-running programs."
    )
    param_model: ClassVar[type[BaseModel]] = ExecuteParams

    def __init__(self, config: ExecuteConfig | None = None, cwd: str | None = None) -> None:
        self._config = config or ExecuteConfig()
        self._cwd = cwd or os.getcwd()

    async def execute(self, params: ExecuteParams) -> ToolResult:
        timeout_ms = params.timeout_ms or self._config.default_timeout_ms
        result = await asyncio.to_thread(
            execute,
            params.command,
            params.args,
            working_dir=params.working_dir or self._cwd,
            timeout=timeout_ms / 1000 if timeout_ms else None,
            shell=params.shell,
        )

        limit = self._config.max_output_bytes
        stdout, stdout_skipped = truncate_output(result.stdout, limit)
        stderr, stderr_skipped = truncate_output(result.stderr, limit)
        payload = {
            "stdout": decode_output(stdout),
            "stderr": decode_output(stderr),
            "exit_code": result.exit_code,
            "timed_out": result.timed_out,
            "duration_ms": round(result.duration * 1000),
        }
        if result.timed_out:
            payload["error"] = (
                f"{result.error_kind}: killed after {timeout_ms}ms"
            )
        if stdout_skipped or stderr_skipped:
            payload["truncated"] = {"stdout": stdout_skipped, "stderr": stderr_skipped}

        output = json.dumps(payload, ensure_ascii=False)
        if result.timed_out:
            return ToolError(output=output, brief=f"Timeout: {params.command[:50]}")
        return ToolOk(output=output, brief=f"exit={result.exit_code}: {params.command[:50]}")
