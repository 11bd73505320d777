"""Bound and clean shell output before it reaches the agent."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

MAX_LINES = 2000
MAX_BYTES = 50 * 1024
CHARS_PER_TOKEN = 4

# CSI (including private "?" modes), OSC, and two-byte escapes
_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)

# C0 and C1 controls other than tab, LF and CR, plus the interlinear
# annotation characters
_UNPRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufff9-\ufffb]")


def truncate_output(
    text: str,
    max_lines: int = MAX_LINES,
    max_bytes: int = MAX_BYTES,
    spill_dir: Path | None = None,
) -> str:
    """Keep the tail of ``text`` within ``max_lines`` and ``max_bytes``.

    A failing command usually says why at the end, so the head is what
    gets dropped. With ``spill_dir`` the complete text is written there
    first and the notice says where.
    """
    if not text:
        return text

    lines = text.split("\n")
    total_bytes = len(text.encode("utf-8", errors="replace"))
    if len(lines) <= max_lines and total_bytes <= max_bytes:
        return text

    dropped_lines = max(0, len(lines) - max_lines)
    tail = "\n".join(lines[dropped_lines:])
    encoded = tail.encode("utf-8", errors="replace")
    dropped_bytes = max(0, len(encoded) - max_bytes)
    if dropped_bytes:
        # A split multi-byte character at the cut is discarded
        tail = encoded[dropped_bytes:].decode("utf-8", errors="ignore")

    skipped = []
    if dropped_lines:
        skipped.append(f"{dropped_lines} lines")
    if dropped_bytes:
        skipped.append(f"{dropped_bytes} bytes")
    notice = (
        f"[Output truncated: first {' and '.join(skipped)} skipped. "
        f"Total: {len(lines)} lines, {total_bytes} bytes]"
    )
    if spill_dir is not None:
        notice += f"\n[Full output saved to: {_spill(text, spill_dir)}]"
    return f"{notice}\n{tail}"


def estimate_tokens(text: str) -> int:
    """Rough token estimate, ~4 characters per token."""
    return len(text) // CHARS_PER_TOKEN


def limit_tokens(text: str, max_tokens: int) -> str:
    """Keep the head and tail of ``text`` so it fits in ``max_tokens``.

    The middle is replaced with ``...`` and a note about the original size
    is appended.
    """
    token_count = estimate_tokens(text)
    if token_count <= max_tokens:
        return text

    keep = (len(text) * max_tokens // token_count) // 2
    trimmed = text[:keep] + "\n\n...\n\n" + text[-keep:] if keep else "..."
    return (
        f"{trimmed}\nThe shell command generated too much output "
        f"({token_count} tokens). Only {max_tokens} tokens worth are shown above."
    )


def _spill(text: str, directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="output-", suffix=".txt", dir=directory)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    return Path(path)


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Drop control characters that binary output leaves behind.

    Tabs, newlines and carriage returns survive; the terminal and the
    output filters need them.
    """
    return _UNPRINTABLE_RE.sub("", text)
