"""Agent-facing tools over a command session."""

from agentshell.tool.base import SessionTool, ToolError, ToolOk, ToolResult

__all__ = [
    "SessionTool",
    "ToolError",
    "ToolOk",
    "ToolResult",
]
