"""Strip shell noise (echoed input, prompts) from captured command output."""

from __future__ import annotations

from typing import Callable

from agentshell.platform import ShellPlatform

LinePredicate = Callable[[str], bool]


def noise_predicates(
    platform: ShellPlatform, command: str | None, delimiter: str
) -> list[LinePredicate]:
    """Predicates matching lines the shell echoed back rather than produced.

    Shells reading from a pipe normally echo nothing, but PowerShell and some
    interactive setups repeat prompts and input.
    """
    delimiter_echo = platform.echo_delimiter(delimiter)
    echoed = {line.strip() for line in (command or "").split("\n") if line.strip()}

    def is_delimiter_echo(line: str) -> bool:
        return line == delimiter_echo or line.endswith(" " + delimiter_echo)

    def is_prompt(line: str) -> bool:
        return any(p.match(line) for p in platform.prompt_patterns)

    def is_command_echo(line: str) -> bool:
        if not platform.echoes_input:
            return False
        if line in echoed:
            return True
        # Prompt immediately followed by the echoed input, e.g. "PS C:\> ls"
        for pattern in platform.prompt_patterns:
            head, sep, tail = line.partition("> ")
            if sep and pattern.match(head + ">") and tail.strip() in echoed:
                return True
        return False

    return [is_delimiter_echo, is_prompt, is_command_echo]


def filter_output(
    text: str, platform: ShellPlatform, command: str | None, delimiter: str
) -> str:
    """Drop noise lines and trim the result."""
    predicates = noise_predicates(platform, command, delimiter)
    kept = [
        line
        for line in text.split("\n")
        if not any(pred(line.strip()) for pred in predicates if line.strip())
    ]
    return "\n".join(kept).strip()
