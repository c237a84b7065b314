"""Append-only reviewer comments, one NDJSON log per sheet.

Comments are never merged into row data and never updated or deleted.
``row_index`` is stored as given; it is not checked against the sheet's
current row count.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

from pydantic import ValidationError

from regsheet.errors import StorageFailure
from regsheet.models import SheetComment
from regsheet.ndjson import append_line, dumps_line, iter_records, read_text

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


class AnnotationLog:
    """Per-sheet comment log stored under ``comments/<sheet_id>.ndjson``."""

    def __init__(self, store_dir: Path, *, fsync: bool = True) -> None:
        self.comments_dir = Path(store_dir) / "comments"
        self.comments_dir.mkdir(parents=True, exist_ok=True)
        self._fsync = fsync

    def append(self, sheet_id: str, author: str, comment: str, row_index: int) -> SheetComment:
        """Stamp ``created_at`` and append a comment to the sheet's log."""
        record = SheetComment(
            sheet_id=sheet_id,
            author=author,
            comment=comment,
            row_index=row_index,
        )
        path = self._path(sheet_id)
        try:
            append_line(path, dumps_line(record.model_dump()), fsync=self._fsync)
        except OSError as exc:
            raise StorageFailure(f"Could not append comment for sheet {sheet_id!r}: {exc}") from exc
        return record

    def list(self, sheet_id: str) -> list[SheetComment]:
        """Return the sheet's comments, oldest first."""
        path = self._path(sheet_id)
        if not path.exists():
            return []
        try:
            text = read_text(path)
        except OSError as exc:
            raise StorageFailure(f"Could not read comments for sheet {sheet_id!r}: {exc}") from exc

        comments: list[SheetComment] = []
        lineno = 0
        try:
            for lineno, record in iter_records(text):
                comments.append(SheetComment(**record))
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise StorageFailure(
                f"Comment log for sheet {sheet_id!r} is corrupt after line {lineno}"
            ) from exc
        # sort() is stable: equal timestamps keep append order
        comments.sort(key=lambda c: c.created_at)
        return comments

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _path(self, sheet_id: str) -> Path:
        if not _SAFE_ID_RE.match(sheet_id or ""):
            raise ValueError(f"Invalid sheet id {sheet_id!r}")
        return self.comments_dir / f"{sheet_id}.ndjson"

