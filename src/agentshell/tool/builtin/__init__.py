"""Built-in tools."""

from agentshell.tool.builtin.shell import ShellTool

__all__ = [
    "ShellTool",
]
