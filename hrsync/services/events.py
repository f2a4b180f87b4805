"""In-process event bus that decouples the HR gateway from the retry queue."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from ..models.queue import SubmissionAction, SubmissionQueueItem
from ..utils.logger import get_app_logger


@dataclass
class SubmissionFailedEvent:
    """Published when the HR system did not accept a clock action."""

    owner_identity: str
    action: SubmissionAction
    timestamp: datetime
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    conversation_thread_id: Optional[str] = None
    message_id: Optional[str] = None
    user_message: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[Any], Awaitable[Any]]


class EventBus:
    """
    Maps event types to async handlers.

    Publishing awaits every handler for the event's type in registration
    order. A handler that raises is logged and skipped; its slot in the
    returned list is None.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = {}
        self.logger = get_app_logger()

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    async def publish(self, event: Any) -> List[Any]:
        results = []
        for handler in self._handlers.get(type(event), []):
            try:
                results.append(await handler(event))
            except Exception as e:
                self.logger.error(f"Handler for {type(event).__name__} failed: {e}")
                results.append(None)
        return results


class SubmissionFailedHandler:
    """Owns the enqueue call for failed submissions."""

    def __init__(self, queue):
        self.queue = queue

    async def __call__(self, event: SubmissionFailedEvent) -> SubmissionQueueItem:
        return await self.queue.enqueue(
            owner_identity=event.owner_identity,
            action=event.action,
            timestamp=event.timestamp,
            conversation_thread_id=event.conversation_thread_id,
            message_id=event.message_id,
            user_message=event.user_message,
            error_message=event.error_message,
            status_code=event.status_code,
            context=event.context,
        )
