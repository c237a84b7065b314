"""Record types persisted by the regression store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

# Cell values are str, bool, int or float; empty cells are "".
Row = dict[str, Any]


def utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def new_id() -> str:
    return uuid.uuid4().hex


class FileMeta(BaseModel):
    """Upload metadata supplied by the caller when creating a file."""

    file_name: str
    model_type: str
    build_type: str
    release_date: str | None = None
    sheet_names: list[str] = Field(default_factory=list)


class RegressionFile(FileMeta):
    """One uploaded workbook.  Immutable after creation."""

    id: str = Field(default_factory=new_id)
    uploaded_at: str = Field(default_factory=utc_now)


class ParsedSheet(BaseModel):
    """A sheet as produced by the workbook parser, before persistence."""

    sheet_name: str
    headers: list[str] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)


class RegressionSheet(BaseModel):
    """One sheet of an uploaded workbook.

    ``data`` rows are addressed by position.  ``headers`` is fixed at
    creation; replacements may change cell values only.
    """

    id: str = Field(default_factory=new_id)
    file_id: str
    sheet_index: int = 0
    sheet_name: str
    headers: list[str] = Field(default_factory=list)
    data: list[Row] = Field(default_factory=list)


class SheetComment(BaseModel):
    """A reviewer comment attached to a sheet row.  Never updated."""

    id: str = Field(default_factory=new_id)
    sheet_id: str
    author: str
    comment: str
    row_index: int
    created_at: str = Field(default_factory=utc_now)
