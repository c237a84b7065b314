"""Structured event logging for regsheet.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from regsheet.logging.events import (
    EventLevel,
    EventType,
    RegsheetEvent,
    display_event_type,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    reset_sink,
    set_store_dir,
    truncate_context,
)
from regsheet.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "RegsheetEvent",
    "display_event_type",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "reset_sink",
    "set_store_dir",
    "truncate_context",
]
