"""Editing session: one loaded sheet plus the overlay of its pending edits.

A session is created when a reviewer opens a sheet and is dropped when
they navigate away.  :meth:`EditSession.save` is the only path from
pending edits to persisted rows.

Saving does not check whether someone else saved the sheet after this
session loaded it.  A stale session overwrites the newer rows with its
own baseline plus its edits (last write wins).
"""

from __future__ import annotations

from typing import Any

from regsheet.columns import annotate_headers, is_editable_column, normalize_header
from regsheet.logging.events import EventType, emit_error, emit_info, emit_warning
from regsheet.errors import InvalidRowData, NotEditable, RegsheetError
from regsheet.models import RegressionSheet, Row
from regsheet.overlay import EditOverlay
from regsheet.store import RegressionStore


class EditSession:
    """Pending edits for one sheet, owned by the reviewer who opened it.

    Parameters
    ----------
    store : RegressionStore
        Store the sheet is loaded from and saved to.
    sheet_id : str
        Sheet to open.  Raises :class:`~regsheet.errors.NotFound`.
    """

    def __init__(self, store: RegressionStore, sheet_id: str) -> None:
        self._store = store
        self._sheet: RegressionSheet = store.get_sheet(sheet_id)
        self.overlay = EditOverlay()

    @property
    def sheet(self) -> RegressionSheet:
        """The baseline sheet as last loaded or saved."""
        return self._sheet

    @property
    def sheet_id(self) -> str:
        return self._sheet.id

    def record_edit(self, row_index: int, header: str, value: str) -> None:
        """Record a pending edit for a cell of the loaded sheet.

        *header* is matched to the sheet's own header ignoring case and
        whitespace, so ``"kb go/no go"`` edits the ``"KB Go/No Go"`` column.

        Raises:
            NotEditable: *header* is not an editable column.
            InvalidRowData: *row_index* is outside the loaded rows, or the
                sheet has no column matching *header*.
        """
        row_index = int(row_index)
        try:
            if not is_editable_column(header):
                raise NotEditable(header)
            target = self._match_header(header)
            if target is None:
                raise InvalidRowData(
                    f"Sheet {self._sheet.sheet_name!r} has no column {header!r}"
                )
            n_rows = len(self._sheet.data)
            if not 0 <= row_index < n_rows:
                raise InvalidRowData(
                    f"Row {row_index} is outside sheet {self._sheet.sheet_name!r} ({n_rows} rows)"
                )
            self.overlay.record_edit(row_index, target, value)
        except RegsheetError as exc:
            emit_warning(
                EventType.edit_rejected,
                f"Edit rejected: {exc}",
                {"sheet_id": self.sheet_id, "header": header, "row_index": row_index},
                error_code=exc.kind,
                sheet_id=self.sheet_id,
            )
            raise

    def current_value(self, row_index: int, header: str) -> str:
        """Return what the review table shows for one cell."""
        row_index = int(row_index)
        header = self._match_header(header) or header
        baseline: Any = ""
        if 0 <= row_index < len(self._sheet.data):
            baseline = self._sheet.data[row_index].get(header, "")
        return self.overlay.current_value(row_index, header, baseline)

    def _match_header(self, header: str) -> str | None:
        if header in self._sheet.headers:
            return header
        key = normalize_header(header)
        return next((h for h in self._sheet.headers if normalize_header(h) == key), None)

    def rows(self) -> list[Row]:
        """Baseline rows with pending edits applied (not persisted)."""
        return self.overlay.merge(self._sheet.data, self._sheet.headers)

    def headers_view(self) -> list[dict[str, object]]:
        return annotate_headers(self._sheet.headers)

    def has_pending_edits(self) -> bool:
        return self.overlay.has_pending_edits()

    def save(self) -> RegressionSheet:
        """Merge pending edits into the baseline and persist the result.

        The overlay is cleared only after the store accepted the new rows;
        on any error it is left as it was so the save can be retried.

        Returns:
            The persisted sheet (the baseline unchanged if nothing was pending).
        """
        if not self.overlay.has_pending_edits():
            return self._sheet

        merged = self.overlay.merge(self._sheet.data, self._sheet.headers)
        n_edits = len(self.overlay)
        try:
            updated = self._store.replace_sheet_data(self._sheet.id, merged)
        except RegsheetError as exc:
            emit_error(
                EventType.save_failed,
                f"Save failed for sheet {self._sheet.sheet_name!r}: {exc}",
                {"sheet_id": self._sheet.id, "file_id": self._sheet.file_id, "pending_edits": n_edits},
                error_code=exc.kind,
                sheet_id=self._sheet.id,
            )
            raise

        self._sheet = updated
        self.overlay.clear()
        emit_info(
            EventType.sheet_saved,
            f"Saved {n_edits} edit(s) to sheet {updated.sheet_name!r}",
            {"sheet_id": updated.id, "file_id": updated.file_id, "edits": n_edits},
            sheet_id=updated.id,
        )
        return updated

    def discard(self) -> None:
        """Drop pending edits without saving."""
        self.overlay.clear()

    def reload(self) -> RegressionSheet:
        """Reload the baseline from the store, dropping pending edits."""
        self._sheet = self._store.get_sheet(self._sheet.id)
        self.overlay.clear()
        return self._sheet
