"""Ordered per-client event stream with protocol checks."""

import asyncio
from typing import AsyncIterator, Dict, Optional, Set

from .events import (
    ErrorEvent,
    MessageContentEvent,
    MessageEndEvent,
    MessageStartEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    StreamEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    format_sse,
)
from ..utils.logger import get_app_logger


DEFAULT_BUFFER_SIZE = 100

_CLOSED = object()


class EventStream:
    """
    Queue of events for one connected client.

    ``emit`` checks each event against the protocol before queueing it:

    - content and end need an open message, and nothing more is accepted for
      a message after its end or an error
    - a tool_call.end needs an earlier tool_call.start with the same id
    - a state.delta needs an earlier state.snapshot in the same stream

    Violations are logged and dropped; the stream stays open. The buffer is
    bounded, so a slow consumer makes ``emit`` wait. After ``detach`` (the
    client went away) every emit is a no-op.
    """

    def __init__(self, max_buffer: int = DEFAULT_BUFFER_SIZE, name: str = "stream"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_buffer)
        self._space = asyncio.Event()
        self._sequence = 0
        self._open_messages: Set[str] = set()
        self._finished_messages: Set[str] = set()
        self._tool_calls: Dict[str, bool] = {}
        self._has_snapshot = False
        self._closed = False
        self._detached = False
        self.dropped = 0
        self.logger = get_app_logger()

    @property
    def has_snapshot(self) -> bool:
        return self._has_snapshot

    @property
    def is_detached(self) -> bool:
        return self._detached

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _check(self, event: StreamEvent) -> Optional[str]:
        """Return why the event breaks the protocol, or None."""
        if isinstance(event, MessageStartEvent):
            if event.message_id in self._open_messages or event.message_id in self._finished_messages:
                return f"message {event.message_id} already started"
            return None

        if isinstance(event, (MessageContentEvent, MessageEndEvent)):
            if event.message_id not in self._open_messages:
                return f"message {event.message_id} is not open"
            return None

        if isinstance(event, ToolCallStartEvent):
            if event.tool_call_id in self._tool_calls:
                return f"tool call {event.tool_call_id} already started"
            return None

        if isinstance(event, ToolCallEndEvent):
            if event.tool_call_id not in self._tool_calls:
                return f"tool call {event.tool_call_id} was never started"
            if self._tool_calls[event.tool_call_id]:
                return f"tool call {event.tool_call_id} already ended"
            return None

        if isinstance(event, StateDeltaEvent):
            if not self._has_snapshot:
                return "state delta before any snapshot"
            return None

        return None

    def _record(self, event: StreamEvent) -> None:
        if isinstance(event, MessageStartEvent):
            self._open_messages.add(event.message_id)
        elif isinstance(event, MessageEndEvent):
            self._open_messages.discard(event.message_id)
            self._finished_messages.add(event.message_id)
        elif isinstance(event, ToolCallStartEvent):
            self._tool_calls[event.tool_call_id] = False
        elif isinstance(event, ToolCallEndEvent):
            self._tool_calls[event.tool_call_id] = True
        elif isinstance(event, StateSnapshotEvent):
            self._has_snapshot = True
        elif isinstance(event, ErrorEvent):
            # An error ends every message still open on this stream
            self._finished_messages.update(self._open_messages)
            self._open_messages.clear()

    def _accept(self, event: StreamEvent) -> bool:
        if self._detached or self._closed:
            return False

        reason = self._check(event)
        if reason is not None:
            self.dropped += 1
            self.logger.warning(f"Dropping {event.type} on {self.name}: {reason}")
            return False

        self._record(event)
        self._sequence += 1
        event.sequence = self._sequence
        return True

    async def _put(self, item) -> bool:
        while self._queue.full():
            if self._detached:
                return False
            self._space.clear()
            await self._space.wait()
        if self._detached and item is not _CLOSED:
            return False
        self._queue.put_nowait(item)
        return True

    async def emit(self, event: StreamEvent) -> bool:
        """
        Queue an event, waiting while the buffer is full.

        Returns:
            True if the event was queued
        """
        if not self._accept(event):
            return False
        return await self._put(event)

    def emit_nowait(self, event: StreamEvent) -> bool:
        """Queue an event without waiting. Drops it if the buffer is full."""
        if self._detached or self._closed:
            return False
        if self._queue.full():
            self.dropped += 1
            self.logger.warning(f"Dropping {event.type} on {self.name}: buffer full")
            return False
        if not self._accept(event):
            return False
        self._queue.put_nowait(event)
        return True

    async def close(self) -> None:
        """Mark the end of the stream. Queued events are still delivered."""
        if self._closed:
            return
        self._closed = True
        if not self._detached:
            await self._put(_CLOSED)

    def close_nowait(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._detached:
            return
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer is behind; detaching is the only way to stop it
            self.detach()

    def detach(self) -> None:
        """
        Stop producing for a client that went away.

        Drains the buffer so producers blocked in ``emit`` wake up. Work
        behind the stream keeps running.
        """
        if self._detached:
            return
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        self._space.set()
        self.logger.info(f"Client detached from {self.name}")

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in order until the stream is closed."""
        while not self._detached:
            event = await self._queue.get()
            self._space.set()
            if event is _CLOSED:
                return
            yield event

    async def sse(self) -> AsyncIterator[str]:
        """
        Yield ``data: <json>`` frames for a text/event-stream response.

        Detaches when the consumer stops iterating, e.g. on disconnect.
        """
        try:
            async for event in self.events():
                yield format_sse(event)
        finally:
            if not self._closed:
                self.detach()
