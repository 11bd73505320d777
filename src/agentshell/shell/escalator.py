"""Timeout escalation — hand control back when a command runs too long."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class EscalatorState(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    SUSPENDED = "suspended"


class TimeoutEscalator:
    """A single resettable timer with the Idle/Armed/Suspended lifecycle.

    ``arm()`` starts (or restarts) the countdown; ``cancel()`` stops it when
    the command finishes. When the countdown expires the escalator moves to
    SUSPENDED and calls ``on_expire``; it stays suspended until ``resume()``.
    """

    def __init__(
        self,
        on_expire: Callable[[], None],
        default_seconds: float,
        max_seconds: float,
    ) -> None:
        self._on_expire = on_expire
        self.default_seconds = default_seconds
        self.max_seconds = max_seconds
        self._state = EscalatorState.IDLE
        self._handle: asyncio.TimerHandle | None = None
        self._command_started: float | None = None
        self._wait_started: float | None = None

    @property
    def state(self) -> EscalatorState:
        return self._state

    def duration(self, requested: float | str | None = None) -> float:
        """Seconds to wait: ``requested`` if it is a positive number, else the
        default; never more than ``max_seconds``."""
        seconds = self.default_seconds
        if requested is not None:
            try:
                value = float(requested)
            except (TypeError, ValueError):
                value = 0
            if value > 0:
                seconds = value
        return min(seconds, self.max_seconds)

    def arm(self, requested: float | str | None = None, new_command: bool = False) -> float:
        """Start the countdown and return the armed duration.

        ``new_command`` also resets the command start time used by
        ``elapsed()``; continuations keep the original start.
        """
        loop = asyncio.get_running_loop()
        self._clear_handle()
        seconds = self.duration(requested)
        now = loop.time()
        self._wait_started = now
        if new_command or self._command_started is None:
            self._command_started = now
        self._handle = loop.call_later(seconds, self._fire)
        self._state = EscalatorState.ARMED
        logger.debug("Command timeout armed for %.2fs", seconds)
        return seconds

    def cancel(self) -> None:
        """The command finished; back to IDLE."""
        self._clear_handle()
        self._state = EscalatorState.IDLE
        self._command_started = None
        self._wait_started = None

    def resume(self) -> None:
        """Leave SUSPENDED; the caller decides whether to re-arm."""
        if self._state is EscalatorState.SUSPENDED:
            self._state = EscalatorState.IDLE

    def waited(self) -> int:
        """Whole seconds since the last ``arm()``."""
        if self._wait_started is None:
            return 0
        return round(asyncio.get_running_loop().time() - self._wait_started)

    def elapsed(self) -> float | None:
        """Seconds since the current command started, or None when idle."""
        if self._command_started is None:
            return None
        return asyncio.get_running_loop().time() - self._command_started

    def _fire(self) -> None:
        self._handle = None
        if self._state is not EscalatorState.ARMED:
            return
        self._state = EscalatorState.SUSPENDED
        self._on_expire()

    def _clear_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def format_elapsed(seconds: float | None) -> str:
    """``"1m 5s"`` / ``"42s"``; empty when nothing is running."""
    if seconds is None:
        return ""
    total = round(seconds)
    minutes, secs = divmod(total, 60)
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
