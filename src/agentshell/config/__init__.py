"""Configuration — Pydantic models for agentshell settings."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from agentshell.platform import PlatformKind


class ShellCommandConfig(BaseModel):
    """Per-command limits for the shell session."""

    timeout_seconds: float = Field(
        default=10, gt=0, description="Default wait before control returns to the caller"
    )
    max_timeout_seconds: float = Field(
        default=300, gt=0, description="Upper bound for a caller-requested wait"
    )
    output_token_max: int = Field(
        default=5000, description="Tool output beyond this many tokens is trimmed"
    )


class TerminalConfig(BaseModel):
    """Virtual terminal size and output backpressure."""

    rows: int = Field(default=24, gt=0)
    cols: int = Field(default=80, gt=0)
    high_watermark: int = Field(
        default=100_000,
        description="Unrendered bytes above which shell output is paused",
    )
    low_watermark: int = Field(
        default=10_000,
        description="Unrendered bytes below which paused output resumes",
    )

    @model_validator(mode="after")
    def _check_watermarks(self) -> TerminalConfig:
        if self.low_watermark >= self.high_watermark:
            raise ValueError("low_watermark must be below high_watermark")
        return self


class AgentShellConfig(BaseModel):
    """Top-level agentshell configuration."""

    agent_name: str = Field(default="agent", description="Owner of the shell session")
    data_dir: str = Field(
        default="~/.agentshell", description="Home directories and staged scripts"
    )
    bin_path: str | None = Field(
        default=None, description="Directory prepended to PATH for staged scripts"
    )
    platform: PlatformKind | None = Field(
        default=None, description="Shell flavour; detected from the host when unset"
    )
    shell: ShellCommandConfig = Field(default_factory=ShellCommandConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def home_path(self) -> Path:
        """Directory the shell starts in for this agent."""
        return self.data_path / "home" / self.agent_name

    @property
    def scripts_path(self) -> Path:
        return self.data_path / "agent-data" / self.agent_name

    @property
    def output_path(self) -> Path:
        """Where complete copies of truncated command output are kept."""
        return self.data_path / "output" / self.agent_name

    @classmethod
    def load(cls, config_path: str | None = None) -> AgentShellConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            AGENTSHELL_AGENT        - Agent name (home directory owner)
            AGENTSHELL_DATA_DIR     - Root for home dirs and staged scripts
            AGENTSHELL_PLATFORM     - "linux" or "windows"
            AGENTSHELL_TIMEOUT      - Default command timeout in seconds
            AGENTSHELL_MAX_TIMEOUT  - Maximum timeout a caller may request
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        env_agent = os.environ.get("AGENTSHELL_AGENT")
        if env_agent:
            config_data["agent_name"] = env_agent

        env_data_dir = os.environ.get("AGENTSHELL_DATA_DIR")
        if env_data_dir:
            config_data["data_dir"] = env_data_dir

        env_platform = os.environ.get("AGENTSHELL_PLATFORM")
        if env_platform:
            config_data["platform"] = env_platform.lower()

        shell = config_data.get("shell", {})

        env_timeout = os.environ.get("AGENTSHELL_TIMEOUT")
        if env_timeout:
            shell["timeout_seconds"] = float(env_timeout)

        env_max_timeout = os.environ.get("AGENTSHELL_MAX_TIMEOUT")
        if env_max_timeout:
            shell["max_timeout_seconds"] = float(env_max_timeout)

        if shell:
            config_data["shell"] = shell

        return cls.model_validate(config_data)
