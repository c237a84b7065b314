"""Sparse edit overlay for reviewer annotations.

An :class:`EditOverlay` holds pending values keyed by ``(row_index,
header)`` for editable headers only.  :meth:`EditOverlay.merge` produces
the next persisted row sequence: the overlay wins where it has an entry,
the baseline is kept everywhere else, and rows are never added, removed,
or renumbered.
"""

from __future__ import annotations

from typing import Any

from regsheet.columns import is_editable_column
from regsheet.errors import NotEditable
from regsheet.models import Row


def display_value(value: Any) -> str:
    """Render a stored cell value the way the review table shows it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class EditOverlay:
    """Pending cell edits for one loaded sheet."""

    def __init__(self) -> None:
        self._edits: dict[tuple[int, str], str] = {}

    def __len__(self) -> int:
        return len(self._edits)

    def __contains__(self, key: object) -> bool:
        return key in self._edits

    def record_edit(self, row_index: int, header: str, value: str) -> None:
        """Insert or overwrite the pending value for ``(row_index, header)``.

        Any string is accepted, including ``""`` to blank a cell.

        Raises:
            NotEditable: *header* is not an editable column.  The overlay
                is left unchanged.
        """
        if not is_editable_column(header):
            raise NotEditable(header)
        if not isinstance(value, str):
            raise TypeError(f"Edit value must be a string, got {type(value).__name__}")
        self._edits[(int(row_index), header)] = value

    def current_value(self, row_index: int, header: str, baseline_value: Any) -> str:
        """Return the pending value if any, else the baseline's display string."""
        key = (int(row_index), header)
        if key in self._edits:
            return self._edits[key]
        return display_value(baseline_value)

    def merge(self, baseline_rows: list[Row], headers: list[str]) -> list[Row]:
        """Return baseline rows with pending edits applied.

        Only headers in *headers* are considered.  Entries addressing rows
        past the end of the baseline are ignored.  *baseline_rows* is not
        mutated; rows without edits are returned as equal copies.
        """
        merged: list[Row] = []
        for i, row in enumerate(baseline_rows):
            new_row = dict(row)
            for h in headers:
                key = (i, h)
                if key in self._edits:
                    new_row[h] = self._edits[key]
            merged.append(new_row)
        return merged

    def has_pending_edits(self) -> bool:
        return bool(self._edits)

    def pending_edits(self) -> list[dict[str, Any]]:
        """Return pending edits as ``{row_index, header, value}``, row-major."""
        return [
            {"row_index": r, "header": h, "value": v}
            for (r, h), v in sorted(self._edits.items())
        ]

    def clear(self) -> None:
        """Drop all pending edits.  Call only after a successful save."""
        self._edits.clear()
