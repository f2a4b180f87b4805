"""Conversation thread documents and API models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import Field

from .base import Document
from ..utils.clock import utcnow


class MessageRole(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


class ToolCallStatus(str, Enum):
    """Lifecycle of a recorded tool call."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolCallError(Document):
    """Error reported by a tool call."""

    code: str = Field(description="Machine readable error code")
    message: str = Field(description="Human readable error message")
    details: Optional[Any] = Field(default=None, description="Additional error details")


class ToolCallRecord(Document):
    """A tool call made while answering a message."""

    id: str = Field(description="Tool call ID")
    name: str = Field(description="Tool name")
    start_time: datetime = Field(default_factory=utcnow, description="When the call started")
    end_time: Optional[datetime] = Field(default=None, description="When the call finished")
    input: Dict[str, Any] = Field(default_factory=dict, description="Tool input")
    output: Optional[Any] = Field(default=None, description="Tool output")
    error: Optional[ToolCallError] = Field(default=None, description="Tool error, if any")
    status: ToolCallStatus = Field(default=ToolCallStatus.RUNNING, description="Tool call status")


class ConversationMessage(Document):
    """A single message in a conversation thread."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Message ID")
    role: MessageRole = Field(description="Message role (user/assistant)")
    content: str = Field(default="", description="Message content")
    timestamp: datetime = Field(default_factory=utcnow, description="Message timestamp")
    intent: Optional[str] = Field(default=None, description="Classified intent")
    intent_confidence: Optional[float] = Field(default=None, description="Intent confidence")
    tool_calls: List[ToolCallRecord] = Field(default_factory=list, description="Tool calls made for this message")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata")


class ConversationState(Document):
    """Authoritative clock state of a conversation."""

    is_clocked_in: bool = Field(default=False, description="Whether the user is clocked in")
    last_clock_in: Optional[datetime] = Field(default=None, description="Last confirmed clock-in")
    last_clock_out: Optional[datetime] = Field(default=None, description="Last confirmed clock-out")
    last_intent: Optional[str] = Field(default=None, description="Last classified intent")
    current_activity: Optional[str] = Field(default=None, description="What the user is currently doing")
    context_memory: Dict[str, Any] = Field(default_factory=dict, description="Free-form context")

    def to_snapshot(self) -> Dict[str, Any]:
        """State as sent to clients in a state.snapshot event."""
        data = self.to_document()
        return {
            "isClockedIn": data["isClockedIn"],
            "lastClockIn": data["lastClockIn"],
            "lastClockOut": data["lastClockOut"],
            "currentActivity": data["currentActivity"],
        }


class UserMetadata(Document):
    """Optional information about the user behind a thread."""

    name: Optional[str] = None
    email: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    device_type: Optional[str] = None


class ConversationThread(Document):
    """A conversation thread, partitioned by owner identity."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Thread ID")
    owner_identity: str = Field(description="Owner identity (partition key)")
    session_id: str = Field(description="Client session that owns this thread")
    messages: List[ConversationMessage] = Field(default_factory=list, description="Ordered messages")
    state: ConversationState = Field(default_factory=ConversationState, description="Clock state")
    user_metadata: Optional[UserMetadata] = Field(default=None, description="User metadata")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    ttl: Optional[int] = Field(default=None, description="Time to live in seconds, None keeps until deleted")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")

    def touch(self, now: datetime) -> None:
        """Bump updated_at without ever moving it backwards."""
        if now > self.updated_at:
            self.updated_at = now

    def find_message(self, message_id: str) -> Optional[ConversationMessage]:
        """Find a message by id."""
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


class SendMessageRequest(Document):
    """Request model for sending a message."""

    message: str = Field(description="User message", min_length=1)
    thread_id: Optional[str] = Field(default=None, description="Existing thread to continue")
    session_id: str = Field(description="Client session ID", min_length=1)
    user_metadata: Optional[UserMetadata] = Field(default=None, description="User metadata")


class ThreadSummaryResponse(Document):
    """Response model for a thread listing entry."""

    id: str = Field(description="Thread ID")
    session_id: str = Field(description="Session ID")
    message_count: int = Field(description="Number of messages")
    is_clocked_in: bool = Field(description="Whether the user is clocked in")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")


class ThreadListResponse(Document):
    """Response model for listing threads."""

    threads: List[ThreadSummaryResponse] = Field(description="Recent threads")
    total: int = Field(description="Number of threads returned")
