"""Upload vocabularies, release-week options and upload activity summary."""

from __future__ import annotations

import math
import re
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable

from regsheet.models import RegressionFile

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(label: str) -> str:
    """``"AAS BOM Diff"`` -> ``"aas-bom-diff"``."""
    return _SLUG_RE.sub("-", label.lower()).strip("-")


def model_type_for_slug(slug: str, model_types: Iterable[str]) -> str:
    """Resolve a URL slug to its model type; unknown slugs map to themselves."""
    for mt in model_types:
        if slugify(mt) == slug:
            return mt
    return slug


def week_start(day: date) -> date:
    """Return the Sunday that starts the week containing *day*."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _short(d: date) -> str:
    return f"{d:%b} {d.day}"


def release_week_options(
    today: date | None = None,
    weeks_before: int = 2,
    weeks_after: int = 4,
) -> list[dict[str, str]]:
    """Sunday-start weeks around the current one, oldest first.

    Each option is ``{"value": "YYYY-MM-DD", "label": "Oct 18 - Oct 24, 2026"}``;
    ``value`` is what gets stored as a file's ``release_date``.
    """
    if today is None:
        today = datetime.now(timezone.utc).date()
    start = week_start(today)
    options = []
    for i in range(-weeks_before, weeks_after + 1):
        ws = start + timedelta(weeks=i)
        we = ws + timedelta(days=6)
        options.append({
            "value": ws.isoformat(),
            "label": f"{_short(ws)} - {_short(we)}, {we.year}",
        })
    return options


def _parse_ts(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


def release_dates(files: Iterable[RegressionFile]) -> list[str]:
    """Distinct release dates of *files*, newest first."""
    return sorted({f.release_date for f in files if f.release_date}, reverse=True)


def filter_files(
    files: Iterable[RegressionFile],
    *,
    build_type: str | None = None,
    release_date: str | None = None,
) -> list[RegressionFile]:
    """Narrow a file listing by build type and release date (order kept)."""
    result = list(files)
    if build_type:
        result = [f for f in result if f.build_type == build_type]
    if release_date:
        result = [f for f in result if f.release_date == release_date]
    return result


def upload_summary(files: list[RegressionFile], now: datetime | None = None) -> dict[str, Any]:
    """Summarise upload activity for a dashboard.

    Returns:
        Dict with ``total``, ``this_week``, ``by_model_type``,
        ``by_build_type`` and ``weekly`` (last four weeks, oldest first).
    """
    if now is None:
        now = datetime.now(timezone.utc)
    start = datetime.combine(week_start(now.date()), datetime.min.time(), tzinfo=timezone.utc)

    uploaded = [_parse_ts(f.uploaded_at) for f in files]

    weekly = []
    for i in range(3, -1, -1):
        ws = start - timedelta(weeks=i)
        we = ws + timedelta(weeks=1)
        weekly.append({
            "week": f"W{math.ceil(ws.day / 7)}",
            "week_start": ws.date().isoformat(),
            "uploads": sum(1 for t in uploaded if ws <= t < we),
        })

    return {
        "total": len(files),
        "this_week": sum(1 for t in uploaded if t >= start),
        "by_model_type": dict(Counter(f.model_type for f in files)),
        "by_build_type": dict(Counter(f.build_type for f in files)),
        "weekly": weekly,
    }
