"""Locked append-only NDJSON files.

Shared by the event sink and the comment log.  Appends take an exclusive
``fcntl.flock`` on the target file and reads take a shared one, each held
for a single ``write``/``read`` call.  Without ``fcntl`` (Windows) locking
is skipped after a one-time stderr warning.
"""

from __future__ import annotations

import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

try:
    import fcntl

    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False
    print("[regsheet] fcntl not available; file locking disabled", file=sys.stderr)


@contextmanager
def locked_fd(path: Path, flags: int, *, exclusive: bool) -> Iterator[int]:
    """Open *path* with *flags* and hold a flock on it while the block runs."""
    fd = os.open(str(path), flags, 0o644)
    try:
        if HAS_FCNTL:
            fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
        try:
            yield fd
        finally:
            if HAS_FCNTL:
                fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def dumps_line(record: dict[str, Any], *, sort_keys: bool = False) -> str:
    return json.dumps(record, ensure_ascii=False, sort_keys=sort_keys, default=str) + "\n"


def append_line(path: Path, line: str, *, fsync: bool = False) -> None:
    """Append one line to *path*, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with locked_fd(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, exclusive=True) as fd:
        os.write(fd, line.encode("utf-8"))
        if fsync:
            os.fsync(fd)


def read_text(path: Path, *, tail_bytes: int | None = None) -> str:
    """Read *path* under a shared lock.

    With *tail_bytes*, only the last *tail_bytes* are read and the first
    (probably partial) line of that window is dropped.
    """
    with locked_fd(path, os.O_RDONLY, exclusive=False) as fd:
        size = os.fstat(fd).st_size
        if tail_bytes is None or size <= tail_bytes:
            start = 0
        else:
            start = size - tail_bytes
            os.lseek(fd, start, os.SEEK_SET)
        chunks = []
        while True:
            chunk = os.read(fd, 65536)
            if not chunk:
                break
            chunks.append(chunk)
    data = b"".join(chunks)
    if start:
        idx = data.find(b"\n")
        data = data[idx + 1:] if idx >= 0 else b""
    return data.decode("utf-8", errors="replace")


def iter_records(text: str) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield ``(line_number, record)`` for each non-blank line of *text*.

    Raises:
        json.JSONDecodeError: A line is not valid JSON.
    """
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if line:
            yield lineno, json.loads(line)
