"""Process handle — the shell subprocess and its three byte streams."""

from __future__ import annotations

import asyncio
import codecs
import enum
import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from typing import Callable

from agentshell.errors import ProcessSpawnFailed, ShellClosed
from agentshell.platform import ShellPlatform

logger = logging.getLogger(__name__)

STDOUT_FD = 1
STDERR_FD = 2


class EventKind(enum.Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    EXIT = "exit"


@dataclass(frozen=True)
class ShellEvent:
    """One chunk of output (or the exit notice) from a shell process.

    ``text`` is the UTF-8 decoded form of ``data``; decoding is incremental
    per stream so multi-byte characters split across reads survive.
    """

    kind: EventKind
    pid: int
    data: bytes = b""
    text: str = ""
    exit_code: int | None = None

    @property
    def is_exit(self) -> bool:
        return self.kind is EventKind.EXIT


EventCallback = Callable[[ShellEvent], None]


class _ShellProtocol(asyncio.SubprocessProtocol):
    """Turns subprocess transport callbacks into ShellEvents.

    The event loop delivers every callback on its own thread, one at a time,
    so the session sees stdout, stderr and exit strictly serialized.
    """

    def __init__(self, on_event: EventCallback) -> None:
        self._on_event = on_event
        self._transport: asyncio.SubprocessTransport | None = None
        self._pid = 0
        self._decoders = {
            STDOUT_FD: codecs.getincrementaldecoder("utf-8")(errors="replace"),
            STDERR_FD: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        }
        self._open_pipes = {STDOUT_FD, STDERR_FD}
        self._exited = False
        self._closed = False

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        self._pid = self._transport.get_pid() or 0

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        kind = EventKind.STDOUT if fd == STDOUT_FD else EventKind.STDERR
        text = self._decoders[fd].decode(data)
        self._on_event(ShellEvent(kind=kind, pid=self._pid, data=data, text=text))

    def pipe_connection_lost(self, fd: int, exc: Exception | None) -> None:
        self._open_pipes.discard(fd)
        self._maybe_close()

    def process_exited(self) -> None:
        self._exited = True
        self._maybe_close()

    def _maybe_close(self) -> None:
        # Exit is reported only once both output pipes are drained, so no
        # data event can trail the exit event.
        if self._closed or not self._exited or self._open_pipes:
            return
        self._closed = True
        exit_code = self._transport.get_returncode() if self._transport else None
        self._on_event(
            ShellEvent(
                kind=EventKind.EXIT,
                pid=self._pid,
                data=str(exit_code).encode(),
                text=str(exit_code),
                exit_code=exit_code,
            )
        )


class ProcessHandle:
    """A running shell with its own process group.

    Wraps an asyncio subprocess transport with:
    - Process group isolation (start_new_session) for safe tree-killing
    - Independent stdout/stderr streams that can be paused for backpressure
    - An exit notification delivered after all output has been read

    Use ``ProcessHandle.spawn()`` to create one.
    """

    def __init__(
        self,
        transport: asyncio.SubprocessTransport,
        protocol: _ShellProtocol,
        command: list[str],
    ) -> None:
        self._transport = transport
        self._protocol = protocol
        self.command = command
        self.pid: int = transport.get_pid()
        self._pgid = _getpgid(self.pid)
        self._paused = False

    @classmethod
    async def spawn(
        cls,
        platform: ShellPlatform,
        on_event: EventCallback,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessHandle:
        """Start ``platform``'s shell and route its output to ``on_event``."""
        loop = asyncio.get_running_loop()
        command = platform.argv
        try:
            transport, protocol = await loop.subprocess_exec(
                lambda: _ShellProtocol(on_event),
                *command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=env if env is not None else clean_env(),
                start_new_session=os.name != "nt",
            )
        except OSError as e:
            raise ProcessSpawnFailed(f"Failed to start {' '.join(command)}: {e}") from e

        if not transport.get_pid():
            transport.close()
            raise ProcessSpawnFailed(f"Shell process failed to start: {' '.join(command)}")

        handle = cls(transport, protocol, command)
        logger.info(
            "Shell started: pid=%d pgid=%s cmd=%s",
            handle.pid,
            handle._pgid,
            " ".join(command),
        )
        return handle

    def write(self, text: str) -> None:
        """Write text to the shell's stdin."""
        stdin = self._transport.get_pipe_transport(0)
        if stdin is None or stdin.is_closing():
            raise ShellClosed(f"stdin of shell {self.pid} is closed")
        stdin.write(text.encode("utf-8"))

    def pause_output(self) -> None:
        """Stop reading stdout and stderr until ``resume_output()``."""
        if self._paused:
            return
        self._paused = True
        for fd in (STDOUT_FD, STDERR_FD):
            pipe = self._transport.get_pipe_transport(fd)
            if pipe is not None and not pipe.is_closing():
                pipe.pause_reading()  # type: ignore[attr-defined]
        logger.debug("Paused output of shell %d", self.pid)

    def resume_output(self) -> None:
        if not self._paused:
            return
        self._paused = False
        for fd in (STDOUT_FD, STDERR_FD):
            pipe = self._transport.get_pipe_transport(fd)
            if pipe is not None and not pipe.is_closing():
                pipe.resume_reading()  # type: ignore[attr-defined]
        logger.debug("Resumed output of shell %d", self.pid)

    @property
    def output_paused(self) -> bool:
        return self._paused

    @property
    def alive(self) -> bool:
        return self._transport.get_returncode() is None

    def kill_tree(self) -> None:
        """Kill the shell and every process it started.

        The exit event arrives later through the normal event callback.
        """
        if self._pgid is not None:
            try:
                os.killpg(self._pgid, signal.SIGKILL)
                logger.info("Killed shell %d (pgid=%d)", self.pid, self._pgid)
            except ProcessLookupError:
                logger.debug("Process group already gone: %d", self._pgid)
        else:
            try:
                self._transport.kill()
            except ProcessLookupError:
                logger.debug("Process already gone: %d", self.pid)

    def close(self) -> None:
        """Release the transport. Does not wait for the process."""
        self._transport.close()


def clean_env() -> dict[str, str]:
    """Environment for the shell: the parent's, minus prompt hooks."""
    env = dict(os.environ)
    # Matches what the virtual terminal can interpret
    env["TERM"] = "xterm"
    env.pop("PROMPT_COMMAND", None)
    return env


def _getpgid(pid: int) -> int | None:
    if os.name == "nt":
        return None
    try:
        return os.getpgid(pid)
    except ProcessLookupError:
        return None
