"""Filesystem NDJSON event sink.

Two destinations inside the store's ``logs/`` directory:

- ``events.ndjson`` -- every event
- ``sheets/<sheet_id>.ndjson`` -- events attributed to one sheet

Lines are written with sorted keys so identical events serialise
identically.  Reads are tail-bounded (``logging_tail_bytes``) and skip
lines that do not parse.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from regsheet.logging.events import RegsheetEvent
from regsheet.ndjson import append_line, dumps_line, read_text

# Sheet ids become file names; reject anything that could escape logs/
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024
_MAX_LIMIT = 2000


class EventSink:
    """Append-only event log for one store."""

    def __init__(self, store_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = Path(store_dir) / "logs"
        self.sheet_logs_dir = self.logs_dir / "sheets"
        self._fsync = fsync
        self._tail_bytes = tail_bytes if tail_bytes is not None else _DEFAULT_TAIL_BYTES
        self.sheet_logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def global_log(self) -> Path:
        return self.logs_dir / "events.ndjson"

    def write(self, event: RegsheetEvent, *, sheet_id: str | None = None) -> None:
        """Append *event* to the global log, and to the sheet's log if given."""
        line = dumps_line(event.model_dump(mode="json"), sort_keys=True)
        append_line(self.global_log, line, fsync=self._fsync)
        if sheet_id and _SAFE_ID_RE.match(sheet_id):
            append_line(self.sheet_logs_dir / f"{sheet_id}.ndjson", line, fsync=self._fsync)

    def read_global(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        file_id: str | None = None,
        sheet_id: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Return matching events from the global log, newest first.

        ``file_id`` and ``sheet_id`` match against the event context.
        """
        wanted = {"level": level, "event_type": event_type}
        wanted_ctx = {"file_id": file_id, "sheet_id": sheet_id}

        matches = []
        for evt in reversed(self._read(self.global_log)):
            if any(v and evt.get(k) != v for k, v in wanted.items()):
                continue
            ctx = evt.get("context") or {}
            if any(v and ctx.get(k) != v for k, v in wanted_ctx.items()):
                continue
            matches.append(evt)
            if len(matches) >= min(limit, _MAX_LIMIT):
                break
        return matches

    def read_sheet_log(self, sheet_id: str) -> list[dict[str, Any]]:
        """Return all events logged for *sheet_id*, oldest first."""
        if not _SAFE_ID_RE.match(sheet_id or ""):
            return []
        return self._read(self.sheet_logs_dir / f"{sheet_id}.ndjson")

    def _read(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        events = []
        for line in read_text(path, tail_bytes=self._tail_bytes).splitlines():
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events
