"""Virtual terminal — tracks normal vs. alternate screen for shell output.

Full-screen programs (pagers, editors, ``top``) switch the terminal to the
alternate screen and redraw it in place. Their raw output is meaningless as
a log, so while the alternate screen is active the session relies on this
emulator's rendered screen instead.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import re
from collections import deque
from typing import Any, Callable

import pyte

logger = logging.getLogger(__name__)

# DEC private modes that switch to the alternate screen buffer
_ALTERNATE_MODES = frozenset({47, 1047, 1049})

# A set or reset of any of those modes, possibly among other private modes
_SCREEN_SWITCH_RE = re.compile(r"\x1b\[\?(?:[\d;]*;)?(?:47|1047|1049)(?:;[\d;]*)?[hl]")

# Bytes rendered per event-loop callback before yielding
_DRAIN_BATCH_BYTES = 64 * 1024

RenderedCallback = Callable[[int], None]


class BufferMode(enum.Enum):
    NORMAL = "normal"
    ALTERNATE = "alternate"


class _TrackingScreen(pyte.Screen):
    """pyte screen that reports alternate-screen switches."""

    def __init__(
        self, columns: int, lines: int, on_switch: Callable[[BufferMode], None]
    ) -> None:
        self._on_switch = on_switch
        super().__init__(columns, lines)

    def set_mode(self, *modes: int, **kwargs: Any) -> None:
        super().set_mode(*modes, **kwargs)
        if kwargs.get("private") and _ALTERNATE_MODES.intersection(modes):
            self._on_switch(BufferMode.ALTERNATE)

    def reset_mode(self, *modes: int, **kwargs: Any) -> None:
        super().reset_mode(*modes, **kwargs)
        if kwargs.get("private") and _ALTERNATE_MODES.intersection(modes):
            self._on_switch(BufferMode.NORMAL)


class TerminalEmulator:
    """A headless terminal fed with raw shell output.

    Writes are queued and rendered from the event loop in batches; each
    chunk's ``on_rendered`` callback fires with its byte count once the
    chunk has been rendered (or discarded by ``dispose()``). Without a
    running loop, writes render immediately.

    ``on_mode_change`` is called with the new BufferMode whenever the
    active screen changes. When leaving the alternate screen the callback
    runs before the screen is cleared, so ``render_alternate()`` still
    shows what the full-screen program displayed.
    """

    def __init__(
        self,
        rows: int = 24,
        cols: int = 80,
        on_mode_change: Callable[[BufferMode], None] | None = None,
    ) -> None:
        self.rows = rows
        self.cols = cols
        self._on_mode_change = on_mode_change
        self._mode = BufferMode.NORMAL
        self._screen = _TrackingScreen(cols, rows, self._switch)
        self._stream = pyte.ByteStream(self._screen)
        self._pending: deque[tuple[bytes, RenderedCallback | None]] = deque()
        self._drain_scheduled = False
        self._disposed = False

    @property
    def mode(self) -> BufferMode:
        return self._mode

    @property
    def pending_bytes(self) -> int:
        return sum(len(data) for data, _ in self._pending)

    def write(self, data: bytes, on_rendered: RenderedCallback | None = None) -> None:
        """Queue raw output for rendering."""
        if self._disposed:
            if on_rendered is not None:
                on_rendered(len(data))
            return
        self._pending.append((data, on_rendered))
        self._schedule_drain()

    def flush(self) -> None:
        """Render everything queued so far, synchronously."""
        while self._pending and not self._disposed:
            self._render_next()

    def render_alternate(self) -> str:
        """Plain-text contents of the visible screen, blank lines dropped."""
        lines = (line.rstrip() for line in self._screen.display)
        return "\n".join(line for line in lines if line).strip()

    def dispose(self) -> None:
        """Stop rendering; acknowledge anything still queued as discarded."""
        self._disposed = True
        self._on_mode_change = None
        while self._pending:
            data, on_rendered = self._pending.popleft()
            if on_rendered is not None:
                on_rendered(len(data))

    def _schedule_drain(self) -> None:
        if self._drain_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._drain_scheduled = True
        loop.call_soon(self._drain)

    def _drain(self) -> None:
        self._drain_scheduled = False
        rendered = 0
        while self._pending and not self._disposed and rendered < _DRAIN_BATCH_BYTES:
            rendered += self._render_next()
        if self._pending and not self._disposed:
            self._schedule_drain()

    def _render_next(self) -> int:
        data, on_rendered = self._pending.popleft()
        self._stream.feed(data)
        if on_rendered is not None:
            on_rendered(len(data))
        return len(data)

    def _switch(self, mode: BufferMode) -> None:
        if mode is self._mode:
            return
        self._mode = mode
        logger.debug("Terminal switched to %s screen", mode.value)
        if self._on_mode_change is not None:
            self._on_mode_change(mode)
        # Each screen starts blank; normal-screen history lives in the session
        self._screen.erase_in_display(2)
        self._screen.cursor_position()


def split_at_screen_switch(text: str) -> list[str]:
    """Split ``text`` right after each alternate-screen switch sequence.

    Text before a switch belongs to the old screen and text after it to the
    new one, so callers handle the pieces one at a time.
    """
    pieces = []
    start = 0
    for match in _SCREEN_SWITCH_RE.finditer(text):
        pieces.append(text[start : match.end()])
        start = match.end()
    if start < len(text) or not pieces:
        pieces.append(text[start:])
    return pieces


def has_screen_switch(text: str) -> bool:
    return _SCREEN_SWITCH_RE.search(text) is not None
