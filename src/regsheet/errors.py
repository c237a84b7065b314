"""Error types for workbook ingestion, edit overlays, and the store."""

from __future__ import annotations


class RegsheetError(Exception):
    """Base class for all regsheet errors.

    Attributes:
        kind: Stable snake_case name used in API error bodies.
    """

    kind = "regsheet_error"


class UnsupportedFormat(RegsheetError):
    """Upload extension or content is not an accepted spreadsheet format.

    Attributes:
        filename: The rejected file name.
    """

    kind = "unsupported_format"

    def __init__(self, filename: str, message: str | None = None) -> None:
        self.filename = filename
        msg = message or (
            f"Unsupported file {filename!r}: expected one of .xlsx, .xls, .csv"
        )
        super().__init__(msg)


class NotFound(RegsheetError):
    """Unknown file or sheet id.

    Attributes:
        entity: ``"file"`` or ``"sheet"``.
        entity_id: The id that was looked up.
    """

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id!r} not found")


class NotEditable(RegsheetError):
    """Edit attempted on a column outside the editable allow-list."""

    kind = "not_editable"

    def __init__(self, header: str) -> None:
        self.header = header
        super().__init__(f"Column {header!r} is not editable")


class ForeignKeyViolation(RegsheetError):
    """A sheet references a file that does not exist."""

    kind = "foreign_key_violation"

    def __init__(self, file_id: str) -> None:
        self.file_id = file_id
        super().__init__(f"Sheet references missing file {file_id!r}")


class InvalidRowData(RegsheetError):
    """Row data would break positional row identity or the header set."""

    kind = "invalid_row_data"


class StorageFailure(RegsheetError):
    """Persistence layer error.  The underlying exception is ``__cause__``."""

    kind = "storage_failure"
