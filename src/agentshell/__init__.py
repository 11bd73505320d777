"""agentshell — a long-lived shell session driven one command at a time."""

from agentshell.config import AgentShellConfig
from agentshell.errors import (
    NoProcessToKill,
    ProcessSpawnFailed,
    SessionBusy,
    SessionNotSuspended,
    SessionStateError,
    ShellClosed,
    ShellError,
)
from agentshell.shell.session import CommandSession

__version__ = "0.1.0"

__all__ = [
    "AgentShellConfig",
    "CommandSession",
    "NoProcessToKill",
    "ProcessSpawnFailed",
    "SessionBusy",
    "SessionNotSuspended",
    "SessionStateError",
    "ShellClosed",
    "ShellError",
]
