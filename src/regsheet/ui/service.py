"""Shared service layer (the access façade) for the regsheet UI and CLI.

This module encapsulates every operation the REST server and the CLI
perform so both share the same logic.  It is the single place that
reaches the regression store, the comment log and the workbook parser:
uploads, file and sheet listings, row replacement, edit sessions and
comments.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from regsheet import __version__
from regsheet.annotations import AnnotationLog
from regsheet.catalog import (
    filter_files,
    model_type_for_slug,
    release_dates,
    release_week_options,
    slugify,
    upload_summary,
)
from regsheet.columns import annotate_headers, editable_headers
from regsheet.errors import UnsupportedFormat
from regsheet.logging.events import EventType, emit_info, emit_warning
from regsheet.models import FileMeta, ParsedSheet, RegressionSheet, SheetComment
from regsheet.project import load_store_config
from regsheet.session import EditSession
from regsheet.store import RegressionStore
from regsheet.workbook_parser import check_extension, parse_workbook


class ReviewService:
    """Service wrapping a single regsheet store directory.

    Parameters
    ----------
    store_dir : Path
        Root of the store.  Must exist.
    """

    def __init__(self, store_dir: Path | None = None) -> None:
        if store_dir is None:
            raise ValueError("store_dir is required")

        self.store_dir = Path(store_dir).resolve()
        if not self.store_dir.is_dir():
            raise FileNotFoundError(f"No store directory at {self.store_dir}")

        self.config = load_store_config(self.store_dir)
        fsync = bool(self.config.get("store_fsync", True))
        self.store = RegressionStore(self.store_dir, fsync=fsync)
        self.comments = AnnotationLog(self.store_dir, fsync=fsync)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def list_files(
        self,
        model_type: str | None = None,
        build_type: str | None = None,
        release_date: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return file records, newest upload first.

        *model_type* may be given as its label or its URL slug.
        """
        if model_type:
            model_type = model_type_for_slug(model_type, self.config["model_types"])
        files = self.store.list_files(model_type=model_type)
        files = filter_files(files, build_type=build_type, release_date=release_date)
        return [f.model_dump() for f in files]

    def get_file(self, file_id: str) -> dict[str, Any]:
        return self.store.get_file(file_id).model_dump()

    def create_file(self, meta: dict[str, Any]) -> dict[str, Any]:
        """Create a file record from upload metadata and its sheet name list."""
        record = self.store.create_file(FileMeta(**meta))
        emit_info(
            EventType.file_created,
            f"Created file {record.file_name!r}",
            {"file_id": record.id, "model_type": record.model_type},
        )
        return record.model_dump()

    def check_file_integrity(self, file_id: str) -> dict[str, Any]:
        """Compare a file's persisted sheets with its declared ``sheet_names``.

        Returns:
            Dict with ``ok``, ``expected`` (declared names), ``found``
            (persisted names in workbook order), ``missing`` and ``unexpected``.
        """
        record = self.store.get_file(file_id)
        found = [s.sheet_name for s in self.store.get_sheets_by_file(file_id)]
        expected = list(record.sheet_names)
        return {
            "file_id": file_id,
            "ok": found == expected,
            "expected": expected,
            "found": found,
            "missing": [n for n in expected if n not in found],
            "unexpected": [n for n in found if n not in expected],
        }

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def list_sheets(self, file_id: str) -> list[dict[str, Any]]:
        return [s.model_dump() for s in self.store.get_sheets_by_file(file_id)]

    def get_sheet(self, sheet_id: str) -> dict[str, Any]:
        return self.store.get_sheet(sheet_id).model_dump()

    def get_sheet_view(self, sheet_id: str) -> dict[str, Any]:
        """Return a sheet with per-header ``editable`` flags for rendering."""
        sheet = self.store.get_sheet(sheet_id)
        return {
            "id": sheet.id,
            "file_id": sheet.file_id,
            "sheet_name": sheet.sheet_name,
            "headers": annotate_headers(sheet.headers),
            "editable_headers": editable_headers(sheet.headers),
            "data": sheet.data,
            "n_rows": len(sheet.data),
        }

    def create_sheets(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Create sheets from ``{file_id, sheet_name, headers, data}`` items.

        Items are persisted in batch order, grouped per file.  The whole
        batch is validated first, so a rejected item writes nothing.
        """
        groups: dict[str, list[ParsedSheet]] = {}
        for item in items:
            groups.setdefault(item.get("file_id", ""), []).append(
                ParsedSheet(
                    sheet_name=item.get("sheet_name", ""),
                    headers=item.get("headers") or [],
                    rows=item.get("data") or [],
                )
            )
        for file_id, sheets in groups.items():
            self.store.prepare_sheets(file_id, sheets)

        created: list[RegressionSheet] = []
        for file_id, sheets in groups.items():
            records = self.store.create_sheets(file_id, sheets)
            emit_info(
                EventType.sheets_created,
                "Created sheet(s)",
                {"file_id": file_id, "sheet_ids": [s.id for s in records]},
            )
            created.extend(records)
        return [s.model_dump() for s in created]

    def update_sheet_data(self, sheet_id: str, data: list[dict[str, Any]]) -> dict[str, Any]:
        """Replace a sheet's rows with a complete, already-merged row list."""
        updated = self.store.replace_sheet_data(sheet_id, data)
        emit_info(
            EventType.sheet_saved,
            f"Replaced rows of sheet {updated.sheet_name!r}",
            {"sheet_id": updated.id, "file_id": updated.file_id, "rows": len(updated.data)},
            sheet_id=updated.id,
        )
        return updated.model_dump()

    # ------------------------------------------------------------------
    # Edit sessions
    # ------------------------------------------------------------------

    def open_session(self, sheet_id: str) -> EditSession:
        """Load a sheet into a new editing session with an empty overlay."""
        return EditSession(self.store, sheet_id)

    def apply_edits(self, sheet_id: str, edits: list[dict[str, Any]]) -> dict[str, Any]:
        """Record ``{row_index, header, value}`` edits and save them together.

        Every edit is validated before anything is written: one edit to a
        locked column, or to a row or column the sheet lacks, aborts the
        whole batch.
        """
        session = self.open_session(sheet_id)
        for edit in edits:
            session.record_edit(
                int(edit["row_index"]),
                str(edit["header"]),
                "" if edit.get("value") is None else str(edit["value"]),
            )
        return session.save().model_dump()

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_comments(self, sheet_id: str) -> list[dict[str, Any]]:
        return [c.model_dump() for c in self.comments.list(sheet_id)]

    def create_comment(
        self,
        sheet_id: str,
        author: str,
        comment: str,
        row_index: int,
    ) -> dict[str, Any]:
        """Append a comment to an existing sheet.  Raises NotFound."""
        self.store.get_sheet(sheet_id)
        record: SheetComment = self.comments.append(sheet_id, author, comment, row_index)
        emit_info(
            EventType.comment_added,
            f"Comment by {author!r} on row {row_index}",
            {"sheet_id": sheet_id, "comment_id": record.id, "row_index": row_index},
            sheet_id=sheet_id,
        )
        return record.model_dump()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_workbook(
        self,
        file_bytes: bytes,
        filename: str,
        model_type: str,
        build_type: str,
        release_date: str | None = None,
    ) -> dict[str, Any]:
        """Parse an uploaded workbook and store it with all of its sheets.

        Validation and parsing finish before anything is written.

        Returns:
            Dict with ``ok``, ``file`` and ``sheets`` (summaries).
        """
        try:
            check_extension(filename)
            self._check_upload(file_bytes, filename, model_type, build_type)
            parsed = parse_workbook(file_bytes, filename)
        except (UnsupportedFormat, ValueError) as exc:
            emit_warning(
                EventType.upload_rejected,
                f"Upload rejected: {exc}",
                {"file_name": filename},
                error_code=getattr(exc, "kind", "invalid_upload"),
            )
            raise

        record = self.store.create_file(
            FileMeta(
                file_name=filename,
                model_type=model_type,
                build_type=build_type,
                release_date=release_date or None,
                sheet_names=[s.sheet_name for s in parsed],
            )
        )
        sheets = self.store.create_sheets(record.id, parsed)

        emit_info(
            EventType.upload_completed,
            f"{filename} with {len(sheets)} sheet(s) uploaded",
            {"file_id": record.id, "file_name": filename, "sheets": len(sheets)},
        )
        return {
            "ok": True,
            "file": record.model_dump(),
            "sheets": [
                {
                    "id": s.id,
                    "sheet_name": s.sheet_name,
                    "n_rows": len(s.data),
                    "n_cols": len(s.headers),
                }
                for s in sheets
            ],
        }

    def _check_upload(
        self,
        file_bytes: bytes,
        filename: str,
        model_type: str,
        build_type: str,
    ) -> None:
        if not model_type or not build_type:
            raise ValueError("model_type and build_type are required")
        if model_type not in self.config["model_types"]:
            raise ValueError(
                f"Unknown model_type {model_type!r}; expected one of {self.config['model_types']}"
            )
        if build_type not in self.config["build_types"]:
            raise ValueError(
                f"Unknown build_type {build_type!r}; expected one of {self.config['build_types']}"
            )
        if len(file_bytes) == 0:
            raise ValueError(f"Uploaded file {filename!r} is empty")
        max_bytes = int(self.config["max_upload_bytes"])
        if len(file_bytes) > max_bytes:
            raise ValueError(f"File too large (max {max_bytes // (1024 * 1024)} MB)")

    # ------------------------------------------------------------------
    # Catalog and dashboard
    # ------------------------------------------------------------------

    def catalog(self) -> dict[str, Any]:
        """Vocabularies and release-week options for the upload form."""
        return {
            "engine_version": __version__,
            "model_types": [
                {"label": mt, "slug": slugify(mt)} for mt in self.config["model_types"]
            ],
            "build_types": list(self.config["build_types"]),
            "release_weeks": release_week_options(
                weeks_before=int(self.config["release_weeks_before"]),
                weeks_after=int(self.config["release_weeks_after"]),
            ),
        }

    def release_dates(self, model_type: str | None = None) -> list[str]:
        return release_dates(self.store.list_files(model_type=model_type))

    def upload_summary(self, now: datetime | None = None) -> dict[str, Any]:
        return upload_summary(self.store.list_files(), now or datetime.now(timezone.utc))


