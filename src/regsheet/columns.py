"""Editable-column classification.

Reviewers may only change a small set of annotation columns in an uploaded
sheet.  Every consumer that validates an edit or renders a sheet imports
:func:`is_editable_column` from here; there is no second definition.
"""

from __future__ import annotations

import re

EDITABLE_COLUMNS: tuple[str, ...] = (
    "KE Comments (Related ALM / PERT ID)",
    "KE Comments (Related ALM/PERT ID)",
    "KE Comments",
    "KB Go/No Go",
    "KB Go No Go",
)

_WS_RE = re.compile(r"\s+")


def normalize_header(header: str) -> str:
    """Lower-case *header*, strip it, and collapse internal whitespace."""
    return _WS_RE.sub(" ", str(header).strip()).lower()


_EDITABLE_KEYS = frozenset(normalize_header(c) for c in EDITABLE_COLUMNS)


def is_editable_column(header: str) -> bool:
    """Return True if reviewers may edit cells under *header*.

    Examples:
        >>> is_editable_column("kb go/no go")
        True
        >>> is_editable_column("  KE   Comments ")
        True
        >>> is_editable_column("Part")
        False
    """
    return normalize_header(header) in _EDITABLE_KEYS


def editable_headers(headers: list[str]) -> list[str]:
    """Return the editable subset of *headers*, in column order."""
    return [h for h in headers if is_editable_column(h)]


def annotate_headers(headers: list[str]) -> list[dict[str, object]]:
    """Return ``[{"name", "editable"}]`` for rendering a sheet's header row."""
    return [{"name": h, "editable": is_editable_column(h)} for h in headers]
