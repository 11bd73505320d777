"""Platform launch parameters — how to drive bash or PowerShell."""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass, field
from typing import Callable


class PlatformKind(enum.StrEnum):
    LINUX = "linux"
    WINDOWS = "windows"


@dataclass(frozen=True)
class ShellPlatform:
    """Everything the session needs to know about one kind of shell.

    The session treats these as opaque: it never inspects the shell binary
    or the syntax of the generated commands.
    """

    kind: PlatformKind
    executable: str
    args: tuple[str, ...]
    cd_command: Callable[[str], str]
    echo_delimiter: Callable[[str], str]
    mkdir_command: Callable[[str], str]
    source_script: Callable[[str | None, str], str]
    pwd_command: str
    not_found_marker: str
    script_extension: str
    script_header: str
    script_stop_on_error: str
    invalid_command_message: str
    # Shell repeats its input on stdout
    echoes_input: bool = False
    # Lines matching any of these are shell noise (prompts) in captured output
    prompt_patterns: tuple[re.Pattern[str], ...] = field(default_factory=tuple)

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


def _bash_source(bin_path: str | None, script_path: str) -> str:
    if bin_path:
        return f'PATH={bin_path}:$PATH source "{script_path}"'
    return f'source "{script_path}"'


def _powershell_source(bin_path: str | None, script_path: str) -> str:
    if bin_path:
        return f'$env:PATH = "{bin_path};$env:PATH"; & "{script_path}"'
    return f'& "{script_path}"'


LINUX = ShellPlatform(
    kind=PlatformKind.LINUX,
    executable="bash",
    args=(),
    cd_command=lambda path: f'cd "{path}"',
    echo_delimiter=lambda delimiter: f'echo "{delimiter}"',
    mkdir_command=lambda path: f'mkdir -p "{path}"',
    source_script=_bash_source,
    pwd_command="pwd",
    not_found_marker="command not found",
    script_extension=".sh",
    script_header="#!/bin/bash",
    script_stop_on_error="set -e",
    invalid_command_message=(
        "Please enter a valid Linux command after the prompt. "
        "Use 'comment' for thoughts."
    ),
)

WINDOWS = ShellPlatform(
    kind=PlatformKind.WINDOWS,
    executable="powershell.exe",
    args=("-NoProfile", "-NoLogo", "-NonInteractive"),
    cd_command=lambda path: f'Set-Location "{path}"',
    echo_delimiter=lambda delimiter: f'Write-Host "{delimiter}"',
    mkdir_command=lambda path: (
        f'New-Item -ItemType Directory -Force -Path "{path}" | Out-Null'
    ),
    source_script=_powershell_source,
    pwd_command="(Get-Location).Path",
    not_found_marker="is not recognized",
    script_extension=".ps1",
    script_header="# PowerShell script",
    script_stop_on_error="$ErrorActionPreference = 'Stop'",
    invalid_command_message=(
        "Please enter a valid PowerShell command after the prompt. "
        "Use 'comment' for thoughts."
    ),
    echoes_input=True,
    prompt_patterns=(re.compile(r"^PS [^>]*>\s*$"),),
)


def get_platform(kind: PlatformKind | str | None = None) -> ShellPlatform:
    """Return launch parameters for ``kind``, or for the host OS if omitted."""
    if kind is None:
        kind = PlatformKind.WINDOWS if os.name == "nt" else PlatformKind.LINUX
    if PlatformKind(kind) is PlatformKind.WINDOWS:
        return WINDOWS
    return LINUX
