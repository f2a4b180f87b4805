"""Server-to-client stream events."""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import Field, TypeAdapter

from ..models.base import Document
from ..models.conversation import ToolCallError
from ..utils.clock import to_epoch_ms, utcnow


MESSAGE_START = "message.start"
MESSAGE_CONTENT = "message.content"
MESSAGE_END = "message.end"
TOOL_CALL_START = "tool_call.start"
TOOL_CALL_END = "tool_call.end"
STATE_SNAPSHOT = "state.snapshot"
STATE_DELTA = "state.delta"
ERROR = "error"


def _now_ms() -> int:
    return to_epoch_ms(utcnow())


class StreamEvent(Document):
    """Common fields of every event."""

    type: str
    timestamp: int = Field(default_factory=_now_ms, description="Unix time in milliseconds")
    sequence: Optional[int] = Field(default=None, description="Position in the stream, set on emit")


class MessageStartEvent(StreamEvent):
    type: Literal["message.start"] = MESSAGE_START
    message_id: str


class MessageContentEvent(StreamEvent):
    type: Literal["message.content"] = MESSAGE_CONTENT
    message_id: str
    content: str


class MessageEndEvent(StreamEvent):
    type: Literal["message.end"] = MESSAGE_END
    message_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ToolCallStartEvent(StreamEvent):
    type: Literal["tool_call.start"] = TOOL_CALL_START
    tool_call_id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolCallEndEvent(StreamEvent):
    type: Literal["tool_call.end"] = TOOL_CALL_END
    tool_call_id: str
    output: Optional[Any] = None
    error: Optional[ToolCallError] = None


class PatchOperation(Document):
    """One RFC 6902 operation. Only add, remove and replace are used."""

    op: Literal["add", "remove", "replace"]
    path: str
    value: Optional[Any] = None


class StateSnapshotEvent(StreamEvent):
    type: Literal["state.snapshot"] = STATE_SNAPSHOT
    state: Dict[str, Any]


class StateDeltaEvent(StreamEvent):
    type: Literal["state.delta"] = STATE_DELTA
    patch: List[PatchOperation]


class ErrorEvent(StreamEvent):
    type: Literal["error"] = ERROR
    code: str
    message: str
    details: Optional[Any] = None
    recoverable: bool = True


AnyEvent = Annotated[
    Union[
        MessageStartEvent,
        MessageContentEvent,
        MessageEndEvent,
        ToolCallStartEvent,
        ToolCallEndEvent,
        StateSnapshotEvent,
        StateDeltaEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(AnyEvent)


def parse_event(data: Union[str, Dict[str, Any]]) -> StreamEvent:
    """Parse a wire event (JSON text or dict) into its event model."""
    if isinstance(data, str):
        return _event_adapter.validate_json(data)
    return _event_adapter.validate_python(data)


def format_sse(event: StreamEvent) -> str:
    """Frame an event for a text/event-stream response."""
    return f"data: {json.dumps(event.to_document())}\n\n"


def parse_sse(body: str) -> List[StreamEvent]:
    """Parse every ``data:`` frame of a text/event-stream body."""
    events = []
    for frame in body.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data:"):
            events.append(parse_event(frame[len("data:"):].strip()))
    return events
