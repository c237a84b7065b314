"""Filesystem regression store: uploaded files and their sheets.

Layout inside a store directory::

    files/<file_id>.json
    sheets/<file_id>/<sheet_id>.json
    locks/<sheet_id>.lock
    locks/file_<file_id>.lock

Comments live beside these records (see :mod:`regsheet.annotations`).

Every record is written to a temporary file, fsynced, and moved into place
with ``os.replace`` so readers observe either the previous or the new
version, never a partial write.  Writers to the same sheet are serialised
with an exclusive ``fcntl.flock`` on the sheet's lock file, and sheet
creation for one file takes that file's lock.

The store does not merge edits and does not retry; callers own both.
"""

from __future__ import annotations

import json
import os
import re
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError

from regsheet.errors import (
    ForeignKeyViolation,
    InvalidRowData,
    NotFound,
    StorageFailure,
)
from regsheet.models import FileMeta, ParsedSheet, RegressionFile, RegressionSheet, Row
from regsheet.ndjson import locked_fd
from regsheet.project import load_store_config

# Path-component validation: ids never escape the store directory
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_SCALAR_TYPES = (str, bool, int, float)


def _atomic_json_write(path: Path, data: Any, *, fsync: bool) -> None:
    """Write JSON to a file atomically via write-to-tmp then os.replace.

    Keys are not sorted: row dicts keep their column order.
    """
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    payload = json.dumps(data, ensure_ascii=False).encode("utf-8")
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
            if fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(str(tmp_path), str(path))
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def validate_rows(
    rows: Any,
    headers: list[str],
    expected_count: int | None = None,
) -> list[Row]:
    """Check the positional row invariant and return *rows*.

    Args:
        rows: Candidate row sequence.
        headers: The sheet's header list; every row key must be one of these.
        expected_count: Required row count (the stored count on replacement).

    Raises:
        InvalidRowData: On a non-list, non-dict row, unknown key,
            non-scalar value, or row count mismatch.
    """
    if not isinstance(rows, list):
        raise InvalidRowData("Row data must be a list of objects")
    if expected_count is not None and len(rows) != expected_count:
        raise InvalidRowData(
            f"Row count changed from {expected_count} to {len(rows)}; "
            "rows are addressed by position and cannot be added or removed"
        )
    header_set = set(headers)
    for idx, row in enumerate(rows):
        if not isinstance(row, dict):
            raise InvalidRowData(f"Row {idx} is not an object")
        unknown = [k for k in row if k not in header_set]
        if unknown:
            raise InvalidRowData(f"Row {idx} has unknown columns {unknown}")
        for key, value in row.items():
            if not isinstance(value, _SCALAR_TYPES):
                raise InvalidRowData(
                    f"Row {idx} column {key!r} holds a non-scalar value"
                )
    return rows


class RegressionStore:
    """Persistent catalog of regression files and their sheets.

    Parameters
    ----------
    store_dir : Path
        Root of the store (see :func:`regsheet.project.init_store`).
    fsync : bool | None
        Override the ``store_fsync`` config value.
    """

    def __init__(self, store_dir: Path, *, fsync: bool | None = None) -> None:
        self.store_dir = Path(store_dir)
        if fsync is None:
            fsync = bool(load_store_config(self.store_dir).get("store_fsync", True))
        self._fsync = fsync

        self.files_dir = self.store_dir / "files"
        self.sheets_dir = self.store_dir / "sheets"
        self.locks_dir = self.store_dir / "locks"
        for d in (self.files_dir, self.sheets_dir, self.locks_dir):
            d.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def create_file(self, meta: FileMeta | dict[str, Any]) -> RegressionFile:
        """Assign an id, stamp ``uploaded_at``, and persist a file record."""
        if isinstance(meta, dict):
            meta = FileMeta(**meta)
        record = RegressionFile(**meta.model_dump())
        self._write(self.files_dir / f"{record.id}.json", record.model_dump())
        return record

    def get_file(self, file_id: str) -> RegressionFile:
        """Return the file record.  Raises :class:`NotFound`."""
        path = self._file_path(file_id)
        if path is None or not path.exists():
            raise NotFound("file", file_id)
        return self._load(RegressionFile, path)

    def file_exists(self, file_id: str) -> bool:
        path = self._file_path(file_id)
        return path is not None and path.exists()

    def list_files(self, model_type: str | None = None) -> list[RegressionFile]:
        """List file records, newest upload first."""
        files = [self._load(RegressionFile, p) for p in self.files_dir.glob("*.json")]
        if model_type is not None:
            files = [f for f in files if f.model_type == model_type]
        files.sort(key=lambda f: (f.uploaded_at, f.id), reverse=True)
        return files

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def prepare_sheets(
        self,
        file_id: str,
        sheets: list[ParsedSheet] | list[dict[str, Any]],
    ) -> list[ParsedSheet]:
        """Validate sheets for *file_id* without writing anything.

        Raises:
            ForeignKeyViolation: *file_id* does not exist.
            InvalidRowData: Duplicate headers or rows outside the headers.
        """
        if not self.file_exists(file_id):
            raise ForeignKeyViolation(file_id)

        parsed: list[ParsedSheet] = []
        for sheet in sheets:
            if isinstance(sheet, dict):
                sheet = ParsedSheet(**sheet)
            if len(set(sheet.headers)) != len(sheet.headers):
                raise InvalidRowData(f"Sheet {sheet.sheet_name!r} has duplicate headers")
            validate_rows(sheet.rows, sheet.headers)
            parsed.append(sheet)
        return parsed

    def create_sheets(
        self,
        file_id: str,
        sheets: list[ParsedSheet] | list[dict[str, Any]],
    ) -> list[RegressionSheet]:
        """Persist one record per parsed sheet, preserving order.

        Every sheet is validated before the first write.  New sheets are
        numbered after the file's existing ones under a per-file lock.

        Raises:
            ForeignKeyViolation: *file_id* does not exist.
            InvalidRowData: Duplicate headers or rows outside the headers.
        """
        parsed = self.prepare_sheets(file_id, sheets)

        sheet_dir = self.sheets_dir / file_id
        sheet_dir.mkdir(exist_ok=True)
        with self._lock(f"file_{file_id}"):
            start = len(self._sheet_paths(file_id))
            records = [
                RegressionSheet(
                    file_id=file_id,
                    sheet_index=start + offset,
                    sheet_name=sheet.sheet_name,
                    headers=list(sheet.headers),
                    data=sheet.rows,
                )
                for offset, sheet in enumerate(parsed)
            ]
            for record in records:
                self._write(sheet_dir / f"{record.id}.json", record.model_dump())
        return records

    def get_sheet(self, sheet_id: str) -> RegressionSheet:
        """Return the sheet record.  Raises :class:`NotFound`."""
        path = self._find_sheet_path(sheet_id)
        if path is None:
            raise NotFound("sheet", sheet_id)
        return self._load(RegressionSheet, path)

    def get_sheets_by_file(self, file_id: str) -> list[RegressionSheet]:
        """Return a file's sheets in workbook order (empty for unknown files)."""
        sheets = [self._load(RegressionSheet, p) for p in self._sheet_paths(file_id)]
        sheets.sort(key=lambda s: s.sheet_index)
        return sheets

    def replace_sheet_data(self, sheet_id: str, rows: list[Row]) -> RegressionSheet:
        """Replace a sheet's complete row sequence atomically.

        This is a full replacement, not a patch: *rows* must already hold
        any merged edits.  The row count and header set must not change.

        Raises:
            NotFound: Unknown sheet.
            InvalidRowData: Row count or keys violate the row invariant.
            StorageFailure: The write failed; the stored rows are unchanged.
        """
        path = self._find_sheet_path(sheet_id)
        if path is None:
            raise NotFound("sheet", sheet_id)

        with self._lock(sheet_id):
            current = self._load(RegressionSheet, path)
            validate_rows(rows, current.headers, expected_count=len(current.data))
            updated = current.model_copy(update={"data": rows})
            self._write(path, updated.model_dump())
        return updated

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _file_path(self, file_id: str) -> Path | None:
        if not _SAFE_ID_RE.match(file_id or ""):
            return None
        return self.files_dir / f"{file_id}.json"

    def _sheet_paths(self, file_id: str) -> list[Path]:
        if not _SAFE_ID_RE.match(file_id or ""):
            return []
        sheet_dir = self.sheets_dir / file_id
        if not sheet_dir.is_dir():
            return []
        return sorted(sheet_dir.glob("*.json"))

    def _find_sheet_path(self, sheet_id: str) -> Path | None:
        if not _SAFE_ID_RE.match(sheet_id or ""):
            return None
        return next(iter(self.sheets_dir.glob(f"*/{sheet_id}.json")), None)

    @contextmanager
    def _lock(self, name: str) -> Iterator[None]:
        """Hold an exclusive lock on ``locks/<name>.lock`` for a write."""
        lock_path = self.locks_dir / f"{name}.lock"
        # Reads and writes inside the block raise StorageFailure themselves,
        # so an OSError here comes from the lock file.
        try:
            with locked_fd(lock_path, os.O_RDWR | os.O_CREAT, exclusive=True):
                yield
        except OSError as exc:
            raise StorageFailure(f"Could not take lock {name!r}: {exc}") from exc

    def _write(self, path: Path, data: Any) -> None:
        try:
            _atomic_json_write(path, data, fsync=self._fsync)
        except OSError as exc:
            raise StorageFailure(f"Could not write {path.name}: {exc}") from exc

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageFailure(f"Could not read {path.name}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageFailure(f"Record {path.name} is not an object")
        return data

    def _load(self, model: type, path: Path) -> Any:
        try:
            return model(**self._read(path))
        except ValidationError as exc:
            raise StorageFailure(f"Record {path.name} is malformed: {exc}") from exc
