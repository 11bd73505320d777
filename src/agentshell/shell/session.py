"""Command session — one long-lived shell driven one command at a time.

Each command is written to the shell's stdin followed by an echo of an
unlikely delimiter string. Output is collected until the delimiter comes
back, the shell exits, or the timeout escalator hands control back to the
caller. All state lives on the session object and is only touched from the
event loop thread: process output arrives through the loop's subprocess
protocol, timers fire as loop callbacks, and the public coroutines run on
the loop, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from agentshell.config import AgentShellConfig
from agentshell.errors import (
    NoProcessToKill,
    SessionBusy,
    SessionNotSuspended,
    SessionStateError,
    ShellClosed,
    ShellError,
)
from agentshell.platform import ShellPlatform, get_platform
from agentshell.session.wire import Wire
from agentshell.shell.escalator import TimeoutEscalator, format_elapsed
from agentshell.shell.filters import filter_output
from agentshell.shell.flow import FlowController
from agentshell.shell.handle import EventCallback, ProcessHandle, ShellEvent
from agentshell.shell.script import is_multiline, script_path, stage_script
from agentshell.shell.terminal import (
    BufferMode,
    TerminalEmulator,
    has_screen_switch,
    split_at_screen_switch,
)
from agentshell.tool.truncation import sanitize_binary_output, strip_ansi

logger = logging.getLogger(__name__)

DELIMITER = "__COMMAND_END_X7YUTT__"
NOTICE_PREFIX = "AGENTSHELL: "

# A delimiter right after a quote is the echo command itself showing up on
# screen (e.g. inside an editor), not its output.
_QUOTES = frozenset("\"'")


class ShellProcess(Protocol):
    """What the session needs from a running shell."""

    pid: int

    def write(self, text: str) -> None: ...

    def pause_output(self) -> None: ...

    def resume_output(self) -> None: ...

    def kill_tree(self) -> None: ...

    def close(self) -> None: ...


Spawner = Callable[[ShellPlatform, EventCallback], Awaitable[ShellProcess]]


def find_delimiter(text: str, delimiter: str = DELIMITER) -> int:
    """Position of the last delimiter not preceded by a quote, or -1."""
    pos = text.rfind(delimiter)
    while pos > 0 and text[pos - 1] in _QUOTES:
        pos = text.rfind(delimiter, 0, pos)
    return pos


def _with_notice(output: str, notice: str) -> str:
    return f"{output}\n{NOTICE_PREFIX}{notice}" if output else f"{NOTICE_PREFIX}{notice}"


class CommandSession:
    """A shell the agent talks to one command at a time.

    ``execute()`` runs a command and returns its output. If the command
    outlives the timeout, the session suspends: ``execute()`` returns what
    was captured so far and the command keeps running. While suspended,
    ``continue_command()`` takes the caller's decision:

    - ``wait [seconds]`` — keep waiting (optionally for a custom duration)
    - ``kill`` — kill the shell's whole process tree
    - anything else — sent to the running program's stdin

    Reading from the shell stops while suspended. Output already in flight
    is queued and replayed, in order, when the caller continues.
    """

    def __init__(
        self,
        config: AgentShellConfig | None = None,
        platform: ShellPlatform | None = None,
        *,
        spawner: Spawner | None = None,
        wire: Wire | None = None,
    ) -> None:
        self.config = config or AgentShellConfig()
        self.platform = platform or get_platform(self.config.platform)
        self._spawner: Spawner = spawner or ProcessHandle.spawn
        self._wire = wire

        self._process: ShellProcess | None = None
        self._pending: asyncio.Future[str] | None = None
        self._busy = False
        self._accumulated = ""
        self._scan_tail = ""
        self._current_command: str | None = None
        self._suspended = False
        self._queued: list[ShellEvent] = []
        self._last_known_path: str | None = None

        terminal_cfg = self.config.terminal
        self._flow = FlowController(
            high_watermark=terminal_cfg.high_watermark,
            low_watermark=terminal_cfg.low_watermark,
        )
        self._terminal = self._new_terminal()
        self._buffer_mode = self._terminal.mode
        self._escalator = TimeoutEscalator(
            on_expire=self._on_timeout,
            default_seconds=self.config.shell.timeout_seconds,
            max_seconds=self.config.shell.max_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, command: str) -> str:
        """Run ``command`` and return its output.

        Returns early, with an "interrupted" notice, if the command is still
        running when the timeout expires; the session is then suspended.

        Raises:
            SessionBusy: a command is running or suspended.
            ProcessSpawnFailed: the shell could not be started.
        """
        if self._suspended:
            raise SessionBusy(
                "A command is suspended; use continue_command() to wait, kill or send input"
            )
        if self._busy or self._pending is not None:
            raise SessionBusy("A command is already running")

        self._busy = True
        try:
            await self._ensure_open()
            if self._suspended:
                raise SessionBusy("Shell setup timed out; use continue_command()")
            return await self._run(command.strip())
        finally:
            self._busy = False

    async def continue_command(self, text: str) -> str:
        """Resume a suspended command with ``wait [seconds]``, ``kill`` or input.

        Raises:
            SessionNotSuspended: nothing is suspended.
            NoProcessToKill: ``kill`` with no live shell.
        """
        if not self._suspended:
            raise SessionNotSuspended("No command is suspended; use execute()")

        text = text.strip()
        parts = text.split()
        choice = parts[0] if parts else ""

        self._suspended = False
        self._escalator.resume()
        self._flow.release()
        future = self._begin_pending()

        queued, self._queued = self._queued, []
        for event in queued:
            self._on_event(event)

        # The backlog alone finished the command
        if self._pending is not future:
            return await future

        if choice == "wait":
            self._escalator.arm(parts[1] if len(parts) > 1 else None)
        elif choice == "kill":
            self._kill()
        else:
            process = self._process
            if process is None:
                self._fail(ShellClosed("Shell process is not open"))
            else:
                process.write(text + "\n")
                self._escalator.arm()

        return await future

    async def get_current_path(self) -> str | None:
        """Working directory of the shell.

        While suspended the shell cannot be asked, so the last known path
        is returned.
        """
        if self._suspended:
            return self._last_known_path

        path = await self.execute(self.platform.pwd_command)
        if not self._suspended:
            self._last_known_path = path
        return self._last_known_path

    async def terminate(self) -> None:
        """Ask the shell to exit, then drop all state regardless of the answer."""
        if self._process is not None and not self._suspended and self._pending is None:
            try:
                await self.execute("exit")
            except ShellError as e:
                logger.warning("Error while exiting shell: %s", e)

        process = self._process
        if process is not None:
            process.kill_tree()
        self._suspended = False
        self._queued.clear()
        self._reset_process()
        if self._pending is not None:
            self._complete(f"{NOTICE_PREFIX}Shell terminated.")

    def is_suspended(self) -> bool:
        return self._suspended

    def get_elapsed_time(self) -> str:
        """How long the current command has been running, e.g. ``"1m 5s"``."""
        return format_elapsed(self._escalator.elapsed())

    @property
    def buffer_mode(self) -> BufferMode:
        return self._buffer_mode

    @property
    def accumulated_output(self) -> str:
        return self._accumulated

    @property
    def current_command(self) -> str | None:
        return self._current_command

    @property
    def last_known_path(self) -> str | None:
        return self._last_known_path

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def queued_events(self) -> int:
        return len(self._queued)

    @property
    def flow(self) -> FlowController:
        return self._flow

    @property
    def terminal(self) -> TerminalEmulator:
        return self._terminal

    @property
    def escalator(self) -> TimeoutEscalator:
        return self._escalator

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    async def _ensure_open(self) -> None:
        if self._process is not None:
            return

        self._reset_command()
        process = await self._spawner(self.platform, self._on_event)
        self._process = process
        self._flow.attach(process)

        restored = self._last_known_path is not None
        if self._wire:
            self._wire.send_shell_open(process.pid, restored)

        if not restored:
            self._comment(f"NEW SHELL OPENED. PID: {process.pid}")
            home = str(self.config.home_path)
            self._error_if_not_empty(await self._run(self.platform.mkdir_command(home)))
            # A timed out bootstrap step leaves the shell suspended; the caller
            # decides what happens next
            if self._suspended:
                return
            self._error_if_not_empty(await self._run(self.platform.cd_command(home)))
        else:
            self._comment(f"SHELL RESTORED. PID: {process.pid}")
            self._error_if_not_empty(
                await self._run(self.platform.cd_command(self._last_known_path))
            )

    async def _run(self, command: str) -> str:
        if self._last_known_path and is_multiline(command):
            path = script_path(self.config.scripts_path, self._last_known_path, self.platform)
            command = await stage_script(
                path, self.platform, self._last_known_path, command, self.config.bin_path
            )

        process = self._process
        if process is None:
            raise ShellClosed("Shell process is not open")

        process.write(f"{command}\n{self.platform.echo_delimiter(DELIMITER)}\n")
        self._current_command = command
        future = self._begin_pending()
        self._escalator.arm(new_command=True)
        return await future

    def _kill(self) -> None:
        process = self._process
        if process is None:
            self._fail(NoProcessToKill("No process to kill"))
            return

        self._error(f"KILL-TREE SIGNAL SENT TO PID: {process.pid}")
        if self._wire:
            self._wire.send_kill(process.pid)
        process.kill_tree()
        # The exit event resolves the command; the timer bounds the wait for it
        self._escalator.arm()

    def _reset_process(self) -> None:
        self._reset_command()
        process, self._process = self._process, None
        self._flow.attach(None)
        if process is not None:
            process.close()

    def _reset_command(self) -> None:
        self._accumulated = ""
        self._scan_tail = ""
        self._current_command = None
        self._escalator.cancel()
        self._reset_terminal()

    def _reset_terminal(self) -> None:
        self._terminal.dispose()
        self._terminal = self._new_terminal()
        self._buffer_mode = self._terminal.mode

    def _new_terminal(self) -> TerminalEmulator:
        cfg = self.config.terminal
        return TerminalEmulator(
            rows=cfg.rows, cols=cfg.cols, on_mode_change=self._on_buffer_change
        )

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    def _on_event(self, event: ShellEvent) -> None:
        if self._suspended:
            self._queued.append(event)
            return

        process = self._process
        if process is None or event.pid != process.pid:
            self._comment(
                f"Ignoring '{event.kind.value}' from old shell process {event.pid}: "
                + event.text[:200]
            )
            return

        if event.is_exit:
            self._handle_exit(event)
            return

        if self._pending is None:
            self._comment(
                f"Ignoring '{event.kind.value}' from process {event.pid} "
                "with no command waiting: " + event.text[:200]
            )
            return

        self._handle_data(event)

    def _handle_exit(self, event: ShellEvent) -> None:
        self._error(f"SHELL EXIT. PID: {event.pid}, CODE: {event.exit_code}")

        if self._pending is None:
            # Died between commands; the next execute() starts a new shell
            if self._wire:
                self._wire.send_shell_exit(event.pid, event.exit_code)
            self._reset_process()
            return

        self._terminal.flush()
        output = self._snapshot()
        if self._wire:
            self._wire.send_shell_exit(event.pid, event.exit_code, output[-500:])

        if output.endswith(self.platform.not_found_marker) or "unexpected EOF" in output:
            output = _with_notice(output, self.platform.invalid_command_message)
        output = _with_notice(output, "Command killed.")

        self._reset_process()
        self._complete(output)

    def _handle_data(self, event: ShellEvent) -> None:
        if self._suspended:
            raise SessionStateError("Output applied while suspended")

        # Full-screen programs often switch screens and draw in one write.
        # Each piece is recorded under the screen that is active for it.
        pieces = split_at_screen_switch(event.text)
        done = False
        for piece in pieces:
            data = event.data if len(pieces) == 1 else piece.encode("utf-8")
            if done:
                self._flow.forward(data, self._terminal)
                continue
            done = self._consume(piece, data)
            if has_screen_switch(piece):
                self._terminal.flush()

        if done:
            self._terminal.flush()
            output = self._snapshot()
            self._reset_command()
            self._complete(output)

    def _consume(self, raw: str, data: bytes) -> bool:
        """Record one piece of output; True if it held the delimiter."""
        text = sanitize_binary_output(strip_ansi(raw))

        # The delimiter may straddle two chunks, so search across the tail
        # of the previous one.
        carried = self._scan_tail
        scan = carried + text
        pos = find_delimiter(scan)
        done = pos != -1
        if done:
            if self._buffer_mode is BufferMode.ALTERNATE:
                self._error("UNEXPECTED END DELIMITER IN ALTERNATE BUFFER: " + text[:200])
            if pos < len(carried):
                head = carried[pos:]
                if self._accumulated.endswith(head):
                    self._accumulated = self._accumulated[: -len(head)]
                text = ""
            else:
                text = text[: pos - len(carried)]
            self._scan_tail = ""
        else:
            self._scan_tail = scan[-(len(DELIMITER) - 1) :]

        # The alternate screen is the record while a full-screen program
        # runs; its text is copied over when it switches back.
        if self._buffer_mode is BufferMode.NORMAL:
            self._accumulated += text

        self._flow.forward(data, self._terminal)
        return done

    def _on_buffer_change(self, mode: BufferMode) -> None:
        if self._buffer_mode is BufferMode.ALTERNATE and mode is BufferMode.NORMAL:
            self._comment("BUFFER CHANGE BACK TO NORMAL")
            self._accumulated += "\n" + self._terminal.render_alternate() + "\n"
        self._buffer_mode = mode
        if self._wire:
            self._wire.send_buffer_change(mode.value)

    def _on_timeout(self) -> None:
        self._suspended = True
        self._queued.clear()
        # Stop reading until the caller continues so the backlog stays bounded
        self._flow.hold()

        self._terminal.flush()
        output = self._snapshot()
        self._accumulated = ""

        # A full-screen program keeps its screen so later snapshots show updates
        if self._buffer_mode is not BufferMode.ALTERNATE:
            self._reset_terminal()

        waited = self._escalator.waited()
        if self._wire:
            self._wire.send_timeout(self._current_command, waited)
        self._complete(_with_notice(output, f"Command interrupted after waiting {waited} seconds."))

    def _snapshot(self) -> str:
        if self._buffer_mode is BufferMode.ALTERNATE:
            screen = self._terminal.render_alternate().split("\n")
            return "\n".join(line for line in screen if DELIMITER not in line).strip()
        return filter_output(self._accumulated, self.platform, self._current_command, DELIMITER)

    # ------------------------------------------------------------------
    # Pending result
    # ------------------------------------------------------------------

    def _begin_pending(self) -> asyncio.Future[str]:
        if self._pending is not None:
            raise SessionStateError("A command is already pending")
        self._pending = asyncio.get_running_loop().create_future()
        return self._pending

    def _complete(self, output: str) -> None:
        future = self._take_pending()
        if not future.cancelled():
            future.set_result(output)

    def _fail(self, error: Exception) -> None:
        future = self._take_pending()
        if not future.cancelled():
            future.set_exception(error)

    def _take_pending(self) -> asyncio.Future[str]:
        future = self._pending
        if future is None:
            raise SessionStateError("No command to resolve")
        if future.done() and not future.cancelled():
            raise SessionStateError("Command resolved twice")
        self._pending = None
        return future

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _comment(self, message: str) -> None:
        logger.info(message)
        if self._wire:
            self._wire.send_comment(message)

    def _error(self, message: str) -> None:
        logger.warning(message)
        if self._wire:
            self._wire.send_error(message)

    def _error_if_not_empty(self, response: str) -> None:
        if response:
            self._error(response)
