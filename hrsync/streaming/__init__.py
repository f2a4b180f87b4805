"""Snapshot/delta event streaming."""

from .events import (
    StreamEvent,
    MessageStartEvent,
    MessageContentEvent,
    MessageEndEvent,
    ToolCallStartEvent,
    ToolCallEndEvent,
    StateSnapshotEvent,
    StateDeltaEvent,
    ErrorEvent,
    PatchOperation,
    parse_event,
    format_sse,
    parse_sse,
)
from .state import ClientStateMirror, PatchError, apply_patch, diff_state
from .stream import EventStream
from .hub import NotificationHub

__all__ = [
    "StreamEvent",
    "MessageStartEvent",
    "MessageContentEvent",
    "MessageEndEvent",
    "ToolCallStartEvent",
    "ToolCallEndEvent",
    "StateSnapshotEvent",
    "StateDeltaEvent",
    "ErrorEvent",
    "PatchOperation",
    "parse_event",
    "format_sse",
    "parse_sse",
    "ClientStateMirror",
    "PatchError",
    "apply_patch",
    "diff_state",
    "EventStream",
    "NotificationHub",
]
