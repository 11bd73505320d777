"""Shell session errors."""

from __future__ import annotations


class ShellError(Exception):
    """Base class for errors reported to the caller of a shell session."""


class SessionBusy(ShellError):
    """A command is already outstanding or the session is suspended."""


class SessionNotSuspended(ShellError):
    """continue_command() was called while no command is suspended."""


class ProcessSpawnFailed(ShellError):
    """The shell process could not be started."""


class NoProcessToKill(ShellError):
    """A kill was requested but no live shell process is tracked."""


class ShellClosed(ShellError):
    """Input was sent while no shell process is open."""


class SessionStateError(RuntimeError):
    """The session state machine was driven into an impossible state.

    Raised for programming errors such as resolving a command twice. Never
    caught by the session itself.
    """
