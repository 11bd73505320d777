"""Shell tool — the agent's entry point to a persistent command session.

Commands go through one long-lived shell, so ``cd`` and environment
variables persist between calls. When a command runs past its timeout the
tool returns what it has so far; the agent's next call then decides
whether to ``wait``, ``kill`` the command, or type input into it.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from agentshell.tool.base import SessionTool, ToolError, ToolOk, ToolResult
from agentshell.tool.truncation import limit_tokens

_EDITORS = ("nano", "vi", "vim")


class ShellParams(BaseModel):
    command: str = Field(
        description=(
            "The shell command to execute. If the previous command was "
            "interrupted, send 'wait [seconds]', 'kill', or input for the "
            "running program instead."
        )
    )


class ShellTool(SessionTool):
    """Run commands in a persistent shell session.

    Interactive editors and exiting the shell are refused: they would
    leave the session waiting on input the agent cannot see.
    """

    name: ClassVar[str] = "shell"
    params: ClassVar[type[BaseModel]] = ShellParams

    async def run(self, params: ShellParams) -> ToolResult:
        session = self.session
        command = params.command.strip()
        suspended = session.is_suspended()

        if not suspended:
            rejection = _check_command(command)
            if rejection:
                return ToolError(output=rejection, brief=f"Rejected: {command[:50]}")
            response = await session.execute(command)
        else:
            response = await session.continue_command(command)

        response = limit_tokens(response, session.config.shell.output_token_max)

        platform = session.platform
        last_line = response.rstrip().rsplit("\n", 1)[-1]
        if platform.not_found_marker in last_line:
            response += "\n" + platform.invalid_command_message

        brief = f"{'continue' if suspended else 'run'}: {self.label(params)}"
        if session.is_suspended():
            brief += f" (still running, {session.get_elapsed_time()})"
        return ToolOk(output=response, brief=brief)

    def label(self, params: ShellParams) -> str:
        return params.command.strip()[:50]


def _check_command(command: str) -> str | None:
    """Reason to refuse ``command``, or None if it may run."""
    parts = command.split()
    if not parts:
        return None
    base = parts[0]
    if base in _EDITORS:
        return (
            f"{base} not supported. Use `cat` to read a file and "
            "`cat > filename << 'EOF'` to write a file"
        )
    if base == "lynx" and (len(parts) < 2 or parts[1] != "--dump"):
        return "Interactive mode with lynx is not supported. Use --dump with lynx to view a website"
    if base == "exit":
        return "Exiting the shell is not allowed"
    return None
