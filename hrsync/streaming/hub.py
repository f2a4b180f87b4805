"""Per-identity fan-out of out-of-band events."""

from typing import Dict, List, Set

from .events import StreamEvent
from .stream import EventStream
from ..utils.logger import get_app_logger


class NotificationHub:
    """
    Delivers events produced outside a request, such as the outcome of a
    queued retry, to every live stream an identity has open.

    Publishing never waits on a slow client: each subscriber gets its own
    copy of the event, and a subscriber whose buffer is full misses it.
    """

    def __init__(self, max_buffer: int = 100):
        self.max_buffer = max_buffer
        self._subscribers: Dict[str, Set[EventStream]] = {}
        self.logger = get_app_logger()

    def subscribe(self, owner_identity: str) -> EventStream:
        stream = EventStream(max_buffer=self.max_buffer, name=f"notifications:{owner_identity}")
        self._subscribers.setdefault(owner_identity, set()).add(stream)
        self.logger.info(f"Live stream opened for {owner_identity}")
        return stream

    def unsubscribe(self, owner_identity: str, stream: EventStream) -> None:
        streams = self._subscribers.get(owner_identity)
        if not streams:
            return
        streams.discard(stream)
        if not streams:
            del self._subscribers[owner_identity]
        self.logger.info(f"Live stream closed for {owner_identity}")

    def has_subscribers(self, owner_identity: str) -> bool:
        return any(not s.is_detached for s in self._subscribers.get(owner_identity, ()))

    def publish(self, owner_identity: str, event: StreamEvent) -> int:
        """
        Send an event to every live stream of an identity.

        Returns:
            Number of streams that accepted the event
        """
        delivered = 0
        for stream in list(self._subscribers.get(owner_identity, ())):
            if stream.is_detached:
                self.unsubscribe(owner_identity, stream)
                continue
            if stream.emit_nowait(event.model_copy(deep=True)):
                delivered += 1
        return delivered

    def close_all(self) -> None:
        """Close every live stream, e.g. on shutdown."""
        streams: List[EventStream] = [s for group in self._subscribers.values() for s in group]
        for stream in streams:
            stream.close_nowait()
        self._subscribers.clear()
