"""Configuration — Pydantic models for termsession settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


class SessionConfig(BaseModel):
    """Defaults and limits for interactive PTY sessions."""

    buffer_size: int = Field(
        default=65_536, gt=0, description="Bytes of output retained per session"
    )
    cols: int = Field(default=80, gt=0, description="Initial terminal width")
    rows: int = Field(default=24, gt=0, description="Initial terminal height")
    max_sessions: int = Field(
        default=32, gt=0, description="Maximum number of live sessions"
    )
    closed_retention: int = Field(
        default=256,
        ge=0,
        description="Closed sessions kept for lookup and final output reads",
    )
    close_grace_period: float = Field(
        default=2.0,
        ge=0,
        description="Seconds a closing process gets after SIGHUP/SIGTERM before SIGKILL",
    )
    term: str = Field(default="dumb", description="TERM value for spawned processes")
    shell: str | None = Field(
        default=None,
        description="Command used when create_session omits one. Defaults to $SHELL.",
    )


class ExecuteConfig(BaseModel):
    """One-off command execution settings."""

    default_timeout_ms: int | None = Field(
        default=None,
        gt=0,
        description="Timeout applied when a call gives none. None waits forever.",
    )
    max_output_bytes: int = Field(
        default=50 * 1024,
        gt=0,
        description="Per-stream byte limit for execute output returned to the caller",
    )


class TermSessionConfig(BaseModel):
    """Top-level termsession configuration."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    execute: ExecuteConfig = Field(default_factory=ExecuteConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> TermSessionConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMSESSION_BUFFER_SIZE         - Bytes of output retained per session
            TERMSESSION_COLS                - Default terminal width
            TERMSESSION_ROWS                - Default terminal height
            TERMSESSION_MAX_SESSIONS        - Live session limit
            TERMSESSION_CLOSE_GRACE_PERIOD  - Seconds before SIGKILL on close
            TERMSESSION_TERM                - TERM for spawned processes
            TERMSESSION_SHELL               - Default session command
            TERMSESSION_EXEC_TIMEOUT_MS     - Default execute timeout
        """
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        session = config_data.get("session", {})
        for env_name, key in (
            ("TERMSESSION_BUFFER_SIZE", "buffer_size"),
            ("TERMSESSION_COLS", "cols"),
            ("TERMSESSION_ROWS", "rows"),
            ("TERMSESSION_MAX_SESSIONS", "max_sessions"),
            ("TERMSESSION_CLOSE_GRACE_PERIOD", "close_grace_period"),
            ("TERMSESSION_TERM", "term"),
            ("TERMSESSION_SHELL", "shell"),
        ):
            value = os.environ.get(env_name)
            if value:
                # pydantic coerces numeric strings
                session[key] = value
        if session:
            config_data["session"] = session

        execute = config_data.get("execute", {})
        env_timeout = os.environ.get("TERMSESSION_EXEC_TIMEOUT_MS")
        if env_timeout:
            execute["default_timeout_ms"] = int(env_timeout)
        if execute:
            config_data["execute"] = execute

        return cls.model_validate(config_data)
