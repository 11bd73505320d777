"""Flow control — bound the bytes waiting to be rendered by the terminal."""

from __future__ import annotations

import logging
from typing import Protocol

from agentshell.shell.terminal import TerminalEmulator

logger = logging.getLogger(__name__)

HIGH_WATERMARK = 100_000
LOW_WATERMARK = 10_000


class PausableOutput(Protocol):
    def pause_output(self) -> None: ...

    def resume_output(self) -> None: ...


class FlowController:
    """Pauses the shell's output while the terminal falls behind.

    Every forwarded chunk counts as unacknowledged until the terminal
    reports it rendered. Crossing ``high_watermark`` pauses stdout and
    stderr; output resumes only once the backlog drops below
    ``low_watermark``.

    ``hold()`` keeps output paused regardless of the backlog, for while
    nobody is reading it.

    All calls happen on the event loop thread, so the counter needs no lock.
    """

    def __init__(
        self,
        high_watermark: int = HIGH_WATERMARK,
        low_watermark: int = LOW_WATERMARK,
    ) -> None:
        if low_watermark >= high_watermark:
            raise ValueError("low_watermark must be below high_watermark")
        self.high_watermark = high_watermark
        self.low_watermark = low_watermark
        self._unacked = 0
        self._paused = False
        self._held = False
        self._output: PausableOutput | None = None

    def attach(self, output: PausableOutput | None) -> None:
        """Switch to a new process; the counter starts over."""
        self._output = output
        self._unacked = 0
        self._paused = False
        self._held = False

    @property
    def unacknowledged(self) -> int:
        return self._unacked

    @property
    def paused(self) -> bool:
        return self._paused

    def forward(self, data: bytes, terminal: TerminalEmulator) -> None:
        """Hand ``data`` to ``terminal`` and pause output if it is backed up."""
        self._unacked += len(data)
        output = self._output
        terminal.write(data, lambda n: self.acknowledge(n, output))
        if self._unacked > self.high_watermark and not self._paused:
            self._paused = True
            logger.debug("Pausing shell output, %d bytes unrendered", self._unacked)
            if self._output is not None and not self._held:
                self._output.pause_output()

    def acknowledge(self, count: int, output: PausableOutput | None = None) -> None:
        """Record ``count`` bytes as rendered.

        ``output`` is the process the bytes came from; acks for a process
        that has since been replaced are ignored.
        """
        if output is not None and output is not self._output:
            return
        self._unacked = max(0, self._unacked - count)
        if self._paused and self._unacked < self.low_watermark:
            self._paused = False
            if self._held:
                return
            logger.debug("Resuming shell output, %d bytes unrendered", self._unacked)
            if self._output is not None:
                self._output.resume_output()

    @property
    def held(self) -> bool:
        return self._held

    def hold(self) -> None:
        """Pause output until ``release()``, whatever the backlog."""
        if self._held:
            return
        self._held = True
        if not self._paused and self._output is not None:
            self._output.pause_output()

    def release(self) -> None:
        """Undo ``hold()``; output stays paused while the backlog is high."""
        if not self._held:
            return
        self._held = False
        if not self._paused and self._output is not None:
            self._output.resume_output()
