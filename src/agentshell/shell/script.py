"""Multi-line commands run from a staged script file.

Feeding several lines through one stdin write is fragile across shells and
loses line numbers in error messages; a script file keeps both.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import aiofiles

from agentshell.platform import ShellPlatform


def is_multiline(command: str) -> bool:
    return len(command.split("\n")) > 1


def script_path(scripts_dir: Path, working_dir: str, platform: ShellPlatform) -> Path:
    """Script location for one agent and working directory.

    The short hash of the working directory keeps sessions of the same agent
    in different directories from overwriting each other's script.
    """
    dir_hash = hashlib.sha256(working_dir.encode()).hexdigest()[:8]
    return scripts_dir / f"multiline-command-{dir_hash}{platform.script_extension}"


def render_script(platform: ShellPlatform, working_dir: str, command: str) -> str:
    return "\n".join(
        [
            platform.script_header,
            platform.script_stop_on_error,
            platform.cd_command(working_dir),
            command.strip(),
        ]
    )


async def stage_script(
    path: Path,
    platform: ShellPlatform,
    working_dir: str,
    command: str,
    bin_path: str | None = None,
) -> str:
    """Write ``command`` to ``path`` and return the line that runs it.

    The script is sourced rather than executed, so directory changes made
    inside it persist in the shell.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(render_script(platform, working_dir, command))
    return platform.source_script(bin_path, str(path))
