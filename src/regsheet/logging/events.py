"""Review events: upload, save, edit rejection and comment records.

Events go to the store's NDJSON logs through a module-level sink that
``set_store_dir`` attaches.  Timestamps are UTC with a ``Z`` suffix.  The
``emit*`` helpers never raise; a logging failure only reaches stderr.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Upload lifecycle
    upload_completed = "upload_completed"
    upload_rejected = "upload_rejected"
    file_created = "file_created"
    sheets_created = "sheets_created"

    # Review lifecycle
    sheet_saved = "sheet_saved"
    save_failed = "save_failed"
    edit_rejected = "edit_rejected"
    comment_added = "comment_added"


_DISPLAY_NAMES: dict[str, str] = {
    "upload_completed": "Upload Completed",
    "upload_rejected": "Upload Rejected",
    "file_created": "File Created",
    "sheets_created": "Sheets Created",
    "sheet_saved": "Sheet Saved",
    "save_failed": "Save Failed",
    "edit_rejected": "Edit Rejected",
    "comment_added": "Comment Added",
}


def display_event_type(event_type: str) -> str:
    """Return a human-readable label for *event_type*."""
    return _DISPLAY_NAMES.get(event_type, event_type.replace("_", " ").title())


# ---------------------------------------------------------------------------
# Context truncation
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256


def truncate_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with long string values truncated."""
    out: dict[str, Any] = {}
    for k, v in context.items():
        if isinstance(v, dict):
            out[k] = truncate_context(v)
        elif isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
            out[k] = v[:_MAX_VALUE_LEN] + "...[truncated]"
        else:
            out[k] = v
    return out


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

# Required context keys per event type.
_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.upload_completed.value: {"file_id"},
    EventType.upload_rejected.value: {"file_name"},
    EventType.file_created.value: {"file_id"},
    EventType.sheets_created.value: {"file_id"},
    EventType.sheet_saved.value: {"sheet_id"},
    EventType.save_failed.value: {"sheet_id"},
    EventType.edit_rejected.value: {"header"},
    EventType.comment_added.value: {"sheet_id", "comment_id"},
}


def _validate_attribution(event: RegsheetEvent) -> RegsheetEvent:
    """Check required context keys; downgrade to warning if missing."""
    etype = event.event_type.value if isinstance(event.event_type, EventType) else event.event_type
    required = _EVENT_REQUIRED_KEYS.get(etype, set())
    missing = required - set(event.context.keys())
    if not missing:
        return event
    ctx = dict(event.context)
    ctx["_missing_attribution"] = sorted(missing)
    return event.model_copy(update={"level": EventLevel.warning, "context": ctx})


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class RegsheetEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Lazily initialised when ``set_store_dir`` is called.
_sink: Any = None  # EventSink | None


def set_store_dir(store_dir: Any) -> None:
    """Configure the module-level event sink for a store directory.

    This should be called early in a CLI command or server startup.  If
    it is never called, ``emit()`` silently discards events.

    Reads ``logging_fsync`` and ``logging_tail_bytes`` from the store
    config (``regsheet.yaml``) to configure the sink.
    """
    global _sink
    from pathlib import Path

    from regsheet.logging.sink import EventSink
    from regsheet.project import load_store_config

    cfg = load_store_config(Path(store_dir))
    fsync = bool(cfg.get("logging_fsync", False))
    tb = cfg.get("logging_tail_bytes")
    tail_bytes = int(tb) if tb is not None else None

    _sink = EventSink(Path(store_dir), fsync=fsync, tail_bytes=tail_bytes)


def reset_sink() -> None:
    """Detach the module-level sink (events are discarded afterwards)."""
    global _sink
    _sink = None


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[regsheet] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: RegsheetEvent, *, sheet_id: str | None = None) -> None:
    """Write an event to the global log and optionally to a per-sheet log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    sink = _sink
    if sink is None:
        return
    try:
        event = event.model_copy(update={"context": truncate_context(event.context)})
        sink.write(_validate_attribution(event), sheet_id=sheet_id)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def _emit_at(
    level: EventLevel,
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None,
    error_code: str | None,
    sheet_id: str | None,
) -> None:
    emit(
        RegsheetEvent(
            level=level,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        ),
        sheet_id=sheet_id,
    )


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    sheet_id: str | None = None,
) -> None:
    _emit_at(EventLevel.info, event_type, message, context, None, sheet_id)


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    sheet_id: str | None = None,
) -> None:
    _emit_at(EventLevel.warning, event_type, message, context, error_code, sheet_id)


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    sheet_id: str | None = None,
) -> None:
    _emit_at(EventLevel.error, event_type, message, context, error_code, sheet_id)
