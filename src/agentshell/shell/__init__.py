"""Shell session machinery — process handle, virtual terminal, flow control,
timeout escalation, and the command session that ties them together.
"""

from agentshell.shell.escalator import EscalatorState, TimeoutEscalator
from agentshell.shell.flow import FlowController
from agentshell.shell.handle import EventKind, ProcessHandle, ShellEvent
from agentshell.shell.session import DELIMITER, CommandSession
from agentshell.shell.terminal import BufferMode, TerminalEmulator

__all__ = [
    "BufferMode",
    "CommandSession",
    "DELIMITER",
    "EscalatorState",
    "EventKind",
    "FlowController",
    "ProcessHandle",
    "ShellEvent",
    "TerminalEmulator",
    "TimeoutEscalator",
]
