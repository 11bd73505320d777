"""Shared fixtures: a scripted stand-in for the shell process."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import pytest

from agentshell.config import AgentShellConfig, ShellCommandConfig
from agentshell.platform import LINUX, ShellPlatform
from agentshell.shell.handle import EventCallback, EventKind, ShellEvent
from agentshell.shell.session import DELIMITER, CommandSession

Responder = Callable[[str], "str | None"]


def default_responder(command: str) -> str | None:
    """Answer like a quiet bash: echo prints, everything else is silent.

    ``sleep`` never finishes on its own.
    """
    if command.startswith("sleep") or command.startswith("hang"):
        return None
    if command.startswith("echo "):
        return command[len("echo ") :]
    return ""


class FakeShell:
    """Stands in for ProcessHandle.

    Commands written with the delimiter echo are answered by ``responder``
    on the next loop iteration; ``None`` means the command keeps running.
    Tests push extra output with ``emit()`` and ``exit()``.
    """

    def __init__(self, pid: int, on_event: EventCallback, responder: Responder) -> None:
        self.pid = pid
        self._on_event = on_event
        self.responder = responder
        self.writes: list[str] = []
        self.paused = False
        self.killed = False
        self.closed = False

    @property
    def commands(self) -> list[str]:
        """Commands issued with a delimiter, oldest first."""
        echo = LINUX.echo_delimiter(DELIMITER)
        return [w.split("\n")[0] for w in self.writes if f"\n{echo}\n" in w]

    def write(self, text: str) -> None:
        self.writes.append(text)
        command, _, rest = text.partition("\n")
        if not rest.startswith(LINUX.echo_delimiter(DELIMITER)):
            return
        loop = asyncio.get_running_loop()
        if command == "exit":
            loop.call_soon(self.exit, 0)
            return
        output = self.responder(command)
        if output is not None:
            reply = f"{output}\n{DELIMITER}\n" if output else f"{DELIMITER}\n"
            loop.call_soon(self.emit, reply)

    def emit(self, text: str, kind: EventKind = EventKind.STDOUT) -> None:
        self._on_event(ShellEvent(kind=kind, pid=self.pid, data=text.encode(), text=text))

    def exit(self, code: int = 0) -> None:
        self._on_event(
            ShellEvent(
                kind=EventKind.EXIT,
                pid=self.pid,
                data=str(code).encode(),
                text=str(code),
                exit_code=code,
            )
        )

    def pause_output(self) -> None:
        self.paused = True

    def resume_output(self) -> None:
        self.paused = False

    def kill_tree(self) -> None:
        self.killed = True
        asyncio.get_running_loop().call_soon(self.exit, -9)

    def close(self) -> None:
        self.closed = True


class FakeSpawner:
    """Spawner that hands out FakeShells and remembers them."""

    def __init__(self, responder: Responder = default_responder) -> None:
        self.responder = responder
        self.shells: list[FakeShell] = []

    async def __call__(self, platform: ShellPlatform, on_event: EventCallback) -> FakeShell:
        # Look the responder up per call so tests can swap it on a live shell
        shell = FakeShell(1000 + len(self.shells), on_event, lambda cmd: self.responder(cmd))
        self.shells.append(shell)
        return shell

    @property
    def shell(self) -> FakeShell:
        return self.shells[-1]


@pytest.fixture
def config(tmp_path: Path) -> AgentShellConfig:
    return AgentShellConfig(
        agent_name="tester",
        data_dir=str(tmp_path / "data"),
        platform="linux",
        shell=ShellCommandConfig(timeout_seconds=0.2, max_timeout_seconds=5),
    )


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def session(config: AgentShellConfig, spawner: FakeSpawner) -> CommandSession:
    return CommandSession(config, LINUX, spawner=spawner)


@pytest.fixture
async def opened(session: CommandSession) -> CommandSession:
    """A session whose shell is already spawned and bootstrapped."""
    await session.execute("true")
    return session


async def settle(predicate: Callable[[], bool], attempts: int = 100) -> None:
    """Let the loop run until ``predicate`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def wait_until() -> Callable[..., object]:
    return settle
