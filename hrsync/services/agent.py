"""Request orchestration: one user message in, one ordered event stream out."""

import asyncio
import re
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

from .audit import AuditService
from .conversation_service import ConversationService
from .gateway import ExternalGateway, SubmissionRequest
from .intent import CLOCK_IN, CLOCK_OUT, GREETING, STATUS, IntentClassifier
from .session_manager import SessionManager
from ..errors import ThreadNotFoundError
from ..models.conversation import (
    ConversationMessage,
    ConversationThread,
    MessageRole,
    SendMessageRequest,
    ToolCallError,
    ToolCallRecord,
    ToolCallStatus,
)
from ..models.queue import SubmissionAction
from ..streaming.events import (
    ErrorEvent,
    MessageContentEvent,
    MessageEndEvent,
    MessageStartEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from ..streaming.hub import NotificationHub
from ..streaming.state import diff_state
from ..streaming.stream import EventStream
from ..utils.clock import Clock, utcnow
from ..utils.logger import get_app_logger


SUBMISSION_QUEUED = "SUBMISSION_QUEUED"
INTERNAL_ERROR = "INTERNAL_ERROR"

_ACTIONS = {
    CLOCK_IN: SubmissionAction.CLOCK_IN,
    CLOCK_OUT: SubmissionAction.CLOCK_OUT,
}

_SENTENCE = re.compile(r"[^.!?]+[.!?]*\s*")


def split_content(text: str) -> List[str]:
    """Split a reply into sentence chunks that concatenate back to ``text``."""
    return _SENTENCE.findall(text) or [text]


def _action_label(action: SubmissionAction) -> str:
    return action.value.replace("-", " ")


class ConversationAgent:
    """
    Handles one user message end to end.

    Each message runs in its own task. The task owns the HR call and, on
    failure, the enqueue, so a client that disconnects mid-stream never
    cancels them; the stream just stops accepting events.
    """

    def __init__(
        self,
        conversations: ConversationService,
        gateway: ExternalGateway,
        sessions: SessionManager,
        audit: AuditService,
        classifier: IntentClassifier,
        hub: Optional[NotificationHub] = None,
        clock: Clock = utcnow,
    ):
        self.conversations = conversations
        self.gateway = gateway
        self.sessions = sessions
        self.audit = audit
        self.classifier = classifier
        self.hub = hub
        self.clock = clock
        self._tasks: Set[asyncio.Task] = set()
        self.logger = get_app_logger()

    def start(
        self,
        owner_identity: str,
        request: SendMessageRequest,
        stream: EventStream,
        source_ip: Optional[str] = None,
    ) -> asyncio.Task:
        """Run ``handle_message`` in a task that outlives the caller."""
        task = asyncio.create_task(self.handle_message(owner_identity, request, stream, source_ip))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight messages, e.g. on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle_message(
        self,
        owner_identity: str,
        request: SendMessageRequest,
        stream: EventStream,
        source_ip: Optional[str] = None,
    ) -> Optional[ConversationThread]:
        """
        Process a message and emit its events. Always closes the stream.

        Returns:
            The updated thread, or None if handling failed
        """
        try:
            return await self._handle(owner_identity, request, stream, source_ip)
        except Exception as e:
            self.logger.exception(f"Failed to handle message for {owner_identity}")
            await stream.emit(ErrorEvent(
                code=INTERNAL_ERROR,
                message="Something went wrong while handling your message. Please try again.",
                details={"error": str(e)},
                recoverable=True,
            ))
            return None
        finally:
            await stream.close()

    async def _handle(
        self,
        owner_identity: str,
        request: SendMessageRequest,
        stream: EventStream,
        source_ip: Optional[str],
    ) -> Optional[ConversationThread]:
        warning = await self.sessions.detect_collision(owner_identity, request.session_id)

        thread = await self.conversations.get_or_create_thread(
            owner_identity,
            request.session_id,
            thread_id=request.thread_id,
            user_metadata=request.user_metadata,
        )

        # Outcomes that could not be pushed live are delivered first
        notices = self.conversations.take_pending_notices(thread)
        for notice in notices:
            await stream.emit(ErrorEvent(
                code=notice.get("code", "SUBMISSION_FAILED"),
                message=notice.get("message", "A queued action failed."),
                details=notice.get("details"),
                recoverable=False,
            ))

        intent, confidence = await self.classifier.classify(request.message)
        user_message = ConversationMessage(
            role=MessageRole.USER,
            content=request.message,
            timestamp=self.clock(),
            intent=intent,
            intent_confidence=confidence,
        )

        def record_user_message(target: ConversationThread) -> None:
            self.conversations.discard_notices(target, notices)
            target.state.last_intent = intent
            if request.user_metadata is not None:
                target.user_metadata = request.user_metadata

        thread = await self.conversations.append_message(thread, user_message, record_user_message)

        message_id = str(uuid.uuid4())
        await stream.emit(MessageStartEvent(message_id=message_id))

        view = thread.state.to_snapshot()
        await stream.emit(StateSnapshotEvent(state=view))

        metadata: Dict[str, Any] = {
            "intent": intent,
            "confidence": confidence,
            "threadId": thread.id,
        }
        tool_calls: List[ToolCallRecord] = []

        if intent in _ACTIONS:
            reply, record, extra = await self._submit(
                thread, _ACTIONS[intent], owner_identity, request.message, user_message.id, stream, view
            )
            tool_calls.append(record)
            metadata.update(extra)
        else:
            reply = self._reply_for(intent, thread)

        for chunk in split_content(reply):
            await stream.emit(MessageContentEvent(message_id=message_id, content=chunk))

        assistant_message = ConversationMessage(
            id=message_id,
            role=MessageRole.ASSISTANT,
            content=reply,
            timestamp=self.clock(),
            intent=intent,
            intent_confidence=confidence,
            tool_calls=tool_calls,
        )

        def record_outcome(target: ConversationThread) -> None:
            for call in tool_calls:
                if call.status == ToolCallStatus.COMPLETED:
                    self.conversations.apply_action(target, SubmissionAction(call.name), call.start_time)

        try:
            thread = await self.conversations.append_message(thread, assistant_message, record_outcome)
        except ThreadNotFoundError:
            self.logger.warning(f"Thread {thread.id} was deleted while answering {owner_identity}")

        if warning is not None:
            metadata["sessionWarning"] = warning.to_document()
        await stream.emit(MessageEndEvent(message_id=message_id, metadata=metadata))
        return thread

    async def _submit(
        self,
        thread: ConversationThread,
        action: SubmissionAction,
        owner_identity: str,
        text: str,
        user_message_id: str,
        stream: EventStream,
        view: Dict[str, Any],
    ) -> Tuple[str, ToolCallRecord, Dict[str, Any]]:
        now = self.clock()
        record = ToolCallRecord(
            id=str(uuid.uuid4()),
            name=action.value,
            start_time=now,
            input={"employeeId": owner_identity, "timestamp": now.isoformat()},
        )
        await stream.emit(ToolCallStartEvent(tool_call_id=record.id, name=record.name, input=record.input))

        progress = dict(view, currentActivity=f"processing_{action.value.replace('-', '_')}")
        await stream.emit(StateDeltaEvent(patch=diff_state(view, progress)))

        result = await self.gateway.submit_or_defer(
            SubmissionRequest(owner_identity=owner_identity, action=action, timestamp=now, notes=text),
            conversation_thread_id=thread.id,
            message_id=user_message_id,
            user_message=text,
        )
        finished = self.clock()
        await self.audit.record_submission(
            owner_identity=owner_identity,
            action=action.value,
            timestamp=finished,
            success=result.success,
            status_code=result.status_code,
            error_message=result.error_message,
            conversation_thread_id=thread.id,
            message_id=user_message_id,
            request_data=record.input,
            response_data=result.response or None,
            duration_ms=int((finished - now).total_seconds() * 1000),
        )
        record.end_time = finished

        if result.success:
            self.conversations.apply_action(thread, action, now)
            record.status = ToolCallStatus.COMPLETED
            record.output = {"status": "confirmed", "statusCode": result.status_code}
            await stream.emit(ToolCallEndEvent(tool_call_id=record.id, output=record.output))

            confirmed = thread.state.to_snapshot()
            await stream.emit(StateDeltaEvent(patch=diff_state(progress, confirmed)))
            if self.hub is not None:
                self.hub.publish(owner_identity, StateSnapshotEvent(state=confirmed))

            verb = "clocked in" if action == SubmissionAction.CLOCK_IN else "clocked out"
            return f"Done. You are {verb} as of {now:%H:%M} UTC.", record, {}

        record.status = ToolCallStatus.FAILED
        record.error = ToolCallError(
            code=SUBMISSION_QUEUED,
            message=result.error_message or "The HR system did not accept the request",
            details={"statusCode": result.status_code, "queueItemId": result.deferred_to},
        )
        await stream.emit(ToolCallEndEvent(tool_call_id=record.id, error=record.error))
        await stream.emit(StateDeltaEvent(patch=diff_state(progress, view)))

        reply = (
            f"I couldn't reach the HR system right now. Your {_action_label(action)} is queued "
            f"and will be retried automatically."
        )
        return reply, record, {"queued": True, "queueItemId": result.deferred_to}

    @staticmethod
    def _reply_for(intent: str, thread: ConversationThread) -> str:
        state = thread.state
        if intent == STATUS:
            if state.is_clocked_in and state.last_clock_in:
                return f"You are clocked in since {state.last_clock_in:%Y-%m-%d %H:%M} UTC."
            if state.last_clock_out:
                return f"You are clocked out. Your last clock-out was {state.last_clock_out:%Y-%m-%d %H:%M} UTC."
            return "You are not clocked in."
        if intent == GREETING:
            return "Hello! I can clock you in or out. Just tell me what you need."
        return "I can help you clock in, clock out or check your status."
