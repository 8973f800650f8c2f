"""CLI entry point for termsession."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any, Optional, TextIO

import typer

from termsession.config import TermSessionConfig
from termsession.errors import TerminalError
from termsession.executor import execute
from termsession.pty.registry import SessionRegistry
from termsession.tool.builtin import create_terminal_tools
from termsession.tool.registry import ToolRegistry
from termsession.wire import Wire

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124  # Same convention as coreutils timeout(1)

app = typer.Typer(
    name="termsession",
    help="PTY-backed terminal sessions and one-off command execution for tool-calling agents.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    # stderr only: stdout carries tool results in serve mode
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def build_tool_registry(
    config: TermSessionConfig, wire: Wire | None = None
) -> tuple[ToolRegistry, SessionRegistry]:
    """Create the session registry and register every tool over it."""
    sessions = SessionRegistry(config=config.session, wire=wire)
    tools = ToolRegistry()
    tools.register_many(create_terminal_tools(sessions, config, cwd=os.getcwd()))
    return tools, sessions


async def handle_line(tools: ToolRegistry, line: str) -> dict[str, Any]:
    """Decode one JSON request line and dispatch it."""
    try:
        request = json.loads(line)
    except json.JSONDecodeError as e:
        return {"content": f"Invalid JSON request: {e}", "is_error": True}
    if not isinstance(request, dict) or not isinstance(request.get("name"), str):
        return {"content": 'Request must be an object with a "name" field', "is_error": True}

    arguments = request.get("arguments") or {}
    content, is_error = await tools.dispatch(request["name"], arguments)
    response: dict[str, Any] = {"content": content, "is_error": is_error}
    if "id" in request:
        response["id"] = request["id"]
    return response


async def serve_lines(tools: ToolRegistry, stdin: TextIO, stdout: TextIO) -> None:
    """Answer line-delimited JSON tool calls until EOF.

    Lines are read in a worker thread; each request is dispatched as its
    own task so a slow execute never holds up session reads.
    """
    loop = asyncio.get_running_loop()
    write_lock = asyncio.Lock()
    pending: set[asyncio.Task] = set()

    async def _answer(line: str) -> None:
        response = await handle_line(tools, line)
        async with write_lock:
            stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
            stdout.flush()

    while True:
        line = await loop.run_in_executor(None, stdin.readline)
        if not line:
            break
        if not line.strip():
            continue
        task = asyncio.create_task(_answer(line))
        pending.add(task)
        task.add_done_callback(pending.discard)

    if pending:
        await asyncio.gather(*pending)


async def _log_events(wire: Wire) -> None:
    queue = wire.subscribe()
    while (event := await queue.get()) is not None:
        logger.info("%s: %s", event.type.value, event.data)


async def _serve(config: TermSessionConfig) -> None:
    wire = Wire()
    wire.attach_loop()
    tools, sessions = build_tool_registry(config, wire=wire)
    events = asyncio.create_task(_log_events(wire))
    try:
        await serve_lines(tools, sys.stdin, sys.stdout)
    finally:
        await asyncio.to_thread(sessions.shutdown)
        wire.close()
        await events


@app.command()
def serve(
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Answer JSON-lines tool calls on stdin/stdout.

    Each request line is {"name": <tool>, "arguments": {...}, "id": <optional>};
    each response line is {"content": <str>, "is_error": <bool>, "id": ...}.
    All sessions are closed on EOF.
    """
    setup_logging(verbose)
    config = TermSessionConfig.load(config_path)
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


@app.command("exec")
def exec_command(
    command: str = typer.Argument(..., help="Executable (or script with --shell)."),
    args: Optional[list[str]] = typer.Argument(None, help="Command arguments."),
    cwd: Optional[str] = typer.Option(None, "--cwd", help="Working directory."),
    timeout_ms: Optional[int] = typer.Option(
        None, "--timeout-ms", "-t", help="Kill the command after this many milliseconds."
    ),
    shell: bool = typer.Option(False, "--shell", help="Run through $SHELL -c."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Run a one-off command and relay its output and exit code."""
    setup_logging(verbose)
    try:
        result = execute(
            command,
            args or [],
            working_dir=cwd,
            timeout=timeout_ms / 1000 if timeout_ms else None,
            shell=shell,
        )
    except TerminalError as e:
        typer.echo(f"ERROR [{e.kind.value}]: {e}", err=True)
        raise typer.Exit(code=127)

    sys.stdout.buffer.write(result.stdout)
    sys.stdout.flush()
    sys.stderr.buffer.write(result.stderr)
    sys.stderr.flush()
    if result.timed_out:
        typer.echo(f"Timed out after {timeout_ms}ms", err=True)
        raise typer.Exit(code=TIMEOUT_EXIT_CODE)
    code = result.exit_code or 0
    # Killed by signal N: shells report 128 + N
    raise typer.Exit(code=128 + result.signal if result.signal else code)


@app.command("tools")
def list_tools() -> None:
    """Print the OpenAI function specs of every tool as JSON."""
    registry, _ = build_tool_registry(TermSessionConfig())
    typer.echo(json.dumps(registry.get_specs(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
