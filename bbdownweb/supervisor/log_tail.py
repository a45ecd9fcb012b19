"""Bounded tail reads over a capture file shared with a running process."""

from __future__ import annotations

import os

from bbdownweb.supervisor.errors import SupervisorIOError

TAIL_WINDOW_BYTES = 1024 * 1024


def sanitize_utf8(data: bytes) -> bytes:
    """Drop split or invalid UTF-8 fragments instead of substituting them."""
    if not data:
        return b""
    return data.decode("utf-8", errors="ignore").encode("utf-8")


def read_tail(fd: int, window: int = TAIL_WINDOW_BYTES) -> bytes:
    """Return up to ``window`` most recently written bytes of ``fd``.

    The offset comes from the file description the child process writes
    through, and the read itself is positional, so the shared cursor never
    moves and repeated calls return the same bytes.
    """
    if window <= 0:
        raise ValueError("window must be positive")
    try:
        offset = os.lseek(fd, 0, os.SEEK_CUR)
    except OSError as exc:
        raise SupervisorIOError(f"cannot determine capture offset: {exc}") from exc
    if offset <= 0:
        return b""
    start = max(0, offset - window)
    chunks: list[bytes] = []
    position = start
    try:
        while position < offset:
            chunk = os.pread(fd, offset - position, position)
            if not chunk:
                break
            chunks.append(chunk)
            position += len(chunk)
    except OSError as exc:
        raise SupervisorIOError(f"cannot read capture file: {exc}") from exc
    return sanitize_utf8(b"".join(chunks))
