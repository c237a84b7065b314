"""Workbook parsing -- uploaded spreadsheet bytes to normalized sheets.

Uses openpyxl for ``.xlsx``, xlrd for legacy ``.xls`` and polars for
``.csv``.  Every format goes through the same table normalisation:

- The first non-blank row is the header row.  Blank header cells are named
  ``__EMPTY``, ``__EMPTY_1``, ...; repeated header text ``X`` becomes
  ``X_1``, ``X_2``, ... from left to right.
- Remaining non-blank rows become data rows, top to bottom.  Every row
  carries every header; missing cells are ``""``.
- A sheet without data rows yields no headers and no rows.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from datetime import date, datetime, time, timedelta
from pathlib import PurePath
from typing import Any, Iterable

import openpyxl
import polars as pl
from openpyxl.utils.exceptions import InvalidFileException

from regsheet.errors import UnsupportedFormat
from regsheet.models import ParsedSheet, Row

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xls", ".csv")

# Name given to the single sheet of a CSV upload.
CSV_SHEET_NAME = "Sheet1"

_EMPTY_HEADER = "__EMPTY"

_INT_RE = re.compile(r"^[-+]?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^[-+]?(0|[1-9]\d*)?\.\d+([eE][-+]?\d+)?$|^[-+]?(0|[1-9]\d*)[eE][-+]?\d+$")


def file_extension(filename: str) -> str:
    """Return the lower-cased extension of *filename*, including the dot."""
    return PurePath(filename).suffix.lower()


def check_extension(filename: str) -> str:
    """Validate the upload extension.  Raises :class:`UnsupportedFormat`.

    Returns:
        The normalised extension.
    """
    ext = file_extension(filename)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(filename)
    return ext


def parse_workbook(data: bytes, filename: str) -> list[ParsedSheet]:
    """Parse an uploaded workbook into its sheets, in workbook order.

    Args:
        data: Raw bytes of the uploaded file.
        filename: Original file name; its extension selects the reader.

    Returns:
        One :class:`ParsedSheet` per sheet.

    Raises:
        UnsupportedFormat: Unknown extension, or bytes the reader rejects.
    """
    ext = check_extension(filename)
    if ext == ".xlsx":
        raw_sheets = _read_xlsx(data, filename)
    elif ext == ".xls":
        raw_sheets = _read_xls(data, filename)
    else:
        raw_sheets = _read_csv(data, filename)

    return [normalize_table(name, rows) for name, rows in raw_sheets]


# ---------------------------------------------------------------------------
# Table normalisation
# ---------------------------------------------------------------------------


def normalize_table(sheet_name: str, raw_rows: Iterable[Iterable[Any]]) -> ParsedSheet:
    """Turn a grid of raw cell values into headers and keyed rows."""
    grid = [[cell_value(v) for v in row] for row in raw_rows]
    grid = [row for row in grid if any(v != "" for v in row)]
    if len(grid) < 2:
        return ParsedSheet(sheet_name=sheet_name)

    width = max(_used_width(row) for row in grid)
    headers = make_headers(grid[0], width)

    rows: list[Row] = []
    for raw in grid[1:]:
        row: Row = {}
        for idx, header in enumerate(headers):
            row[header] = raw[idx] if idx < len(raw) else ""
        rows.append(row)

    return ParsedSheet(sheet_name=sheet_name, headers=headers, rows=rows)


def make_headers(header_cells: list[Any], width: int) -> list[str]:
    """Build unique header names for the first *width* columns."""
    headers: list[str] = []
    used: set[str] = set()
    counters: dict[str, int] = {}
    for idx in range(width):
        raw = header_cells[idx] if idx < len(header_cells) else ""
        base = str(raw) if raw != "" else _EMPTY_HEADER
        name = base
        n = counters.get(base, 0)
        while name in used:
            n += 1
            name = f"{base}_{n}"
        counters[base] = n
        used.add(name)
        headers.append(name)
    return headers


def _used_width(row: list[Any]) -> int:
    for idx in range(len(row) - 1, -1, -1):
        if row[idx] != "":
            return idx + 1
    return 0


def cell_value(value: Any) -> Any:
    """Convert a reader cell value to a JSON scalar."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, str):
        return value
    return str(value)


def parse_literal(text: str | None) -> Any:
    """Convert CSV cell text to a typed value (int, float, bool, string).

    Numbers with leading zeros (part numbers, ids) stay text.
    """
    if text is None:
        return ""
    stripped = text.strip()
    if stripped.upper() in ("TRUE", "FALSE"):
        return stripped.upper() == "TRUE"
    if _INT_RE.match(stripped):
        return int(stripped)
    if _FLOAT_RE.match(stripped):
        return float(stripped)
    return text


# ---------------------------------------------------------------------------
# Readers -- each returns [(sheet_name, raw_rows), ...]
# ---------------------------------------------------------------------------


def _read_xlsx(data: bytes, filename: str) -> list[tuple[str, list[tuple[Any, ...]]]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise UnsupportedFormat(filename, f"Could not read {filename!r} as .xlsx: {exc}") from exc

    try:
        sheets = []
        for ws in wb.worksheets:
            rows = list(ws.iter_rows(values_only=True))
            logger.debug("xlsx sheet %r: %d raw rows", ws.title, len(rows))
            sheets.append((ws.title, rows))
        return sheets
    finally:
        wb.close()


def _read_xls(data: bytes, filename: str) -> list[tuple[str, list[list[Any]]]]:
    try:
        import xlrd
    except ImportError:
        raise ImportError(
            "xlrd is required for .xls uploads.  Install with: pip install xlrd"
        )

    try:
        book = xlrd.open_workbook(file_contents=data)
    except (xlrd.XLRDError, OSError, ValueError, AssertionError) as exc:
        raise UnsupportedFormat(filename, f"Could not read {filename!r} as .xls: {exc}") from exc

    sheets = []
    for sheet in book.sheets():
        rows = []
        for r in range(sheet.nrows):
            values = []
            for cell in sheet.row(r):
                if cell.ctype == xlrd.XL_CELL_DATE:
                    values.append(xlrd.xldate.xldate_as_datetime(cell.value, book.datemode))
                elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                    values.append(bool(cell.value))
                elif cell.ctype == xlrd.XL_CELL_ERROR:
                    values.append(xlrd.error_text_from_code.get(cell.value, "#ERR"))
                elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                    values.append(None)
                else:
                    values.append(cell.value)
            rows.append(values)
        sheets.append((sheet.name, rows))
    return sheets


def _read_csv(data: bytes, filename: str) -> list[tuple[str, list[list[Any]]]]:
    # Strip a UTF-8 BOM so it does not end up in the first header.
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    if not data.strip():
        return [(CSV_SHEET_NAME, [])]

    try:
        df = pl.read_csv(
            io.BytesIO(data),
            has_header=False,
            infer_schema=False,
            truncate_ragged_lines=True,
            encoding="utf8-lossy",
        )
    except pl.exceptions.PolarsError as exc:
        raise UnsupportedFormat(filename, f"Could not read {filename!r} as .csv: {exc}") from exc

    rows = [[parse_literal(v) for v in row] for row in df.rows()]
    return [(CSV_SHEET_NAME, rows)]
