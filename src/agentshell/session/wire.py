"""Wire protocol — decouples the shell session from whoever displays it.

Events flow from the session to subscribers (a console, a log writer, an
agent transcript). Each subscriber gets its own queue, so a slow reader
never blocks the session.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    COMMENT = "comment"
    ERROR = "error"
    SHELL_OPEN = "shell_open"
    SHELL_EXIT = "shell_exit"
    BUFFER_CHANGE = "buffer_change"
    TIMEOUT = "timeout"
    KILL = "kill"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: session -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_comment(self, message: str) -> None:
        self.send(WireEvent(type=EventType.COMMENT, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def send_shell_open(self, pid: int, restored: bool) -> None:
        self.send(
            WireEvent(
                type=EventType.SHELL_OPEN,
                data={"pid": pid, "restored": restored},
            )
        )

    def send_shell_exit(
        self, pid: int, exit_code: int | None, last_output: str = ""
    ) -> None:
        """Notify subscribers that the shell process went away."""
        self.send(
            WireEvent(
                type=EventType.SHELL_EXIT,
                data={
                    "pid": pid,
                    "exit_code": exit_code,
                    "last_output": last_output[:500],
                },
            )
        )

    def send_buffer_change(self, mode: str) -> None:
        self.send(WireEvent(type=EventType.BUFFER_CHANGE, data={"mode": mode}))

    def send_timeout(self, command: str | None, waited_seconds: int) -> None:
        self.send(
            WireEvent(
                type=EventType.TIMEOUT,
                data={"command": command, "waited_seconds": waited_seconds},
            )
        )

    def send_kill(self, pid: int) -> None:
        self.send(WireEvent(type=EventType.KILL, data={"pid": pid}))

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
