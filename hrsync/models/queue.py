"""Submission queue documents and API models."""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import Field, model_validator

from .base import Document
from ..utils.clock import utcnow


DEFAULT_MAX_RETRIES = 3
QUEUE_ITEM_TTL_SECONDS = 7 * 24 * 60 * 60


class SubmissionAction(str, Enum):
    """State-changing action sent to the HR system."""

    CLOCK_IN = "clock-in"
    CLOCK_OUT = "clock-out"


class QueueItemStatus(str, Enum):
    """Status of a queued submission."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_QUEUE_STATUSES = (QueueItemStatus.COMPLETED, QueueItemStatus.FAILED)


class SubmissionQueueItem(Document):
    """A clock action waiting to be delivered to the HR system."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Queue item ID")
    owner_identity: str = Field(description="Owner identity (partition key)")
    action: SubmissionAction = Field(description="Action to submit")
    timestamp: datetime = Field(description="Target time of the action")
    user_message: Optional[str] = Field(default=None, description="Message that triggered the action")
    conversation_thread_id: Optional[str] = Field(default=None, description="Originating thread")
    message_id: Optional[str] = Field(default=None, description="Originating message")
    retry_count: int = Field(default=0, ge=0, description="Attempts made so far")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, description="Maximum attempts")
    status: QueueItemStatus = Field(default=QueueItemStatus.PENDING, description="Queue status")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    next_retry_at: Optional[datetime] = Field(default=None, description="Earliest time of the next attempt")
    last_processed_at: Optional[datetime] = Field(default=None, description="Time of the last attempt")
    lease_expires_at: Optional[datetime] = Field(default=None, description="Processing lease expiry")
    last_error: Optional[str] = Field(default=None, description="Last error message")
    last_status_code: Optional[int] = Field(default=None, description="Last HTTP status code")
    context_data: Dict[str, Any] = Field(default_factory=dict, description="Extra context for the retry")
    ttl: int = Field(default=QUEUE_ITEM_TTL_SECONDS, description="Time to live in seconds")
    expires_at: Optional[datetime] = Field(default=None, description="When the item may be garbage collected")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")

    @model_validator(mode="after")
    def _fill_expiry(self):
        if self.expires_at is None:
            self.expires_at = self.created_at + timedelta(seconds=self.ttl)
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_QUEUE_STATUSES

    def is_retry_exhausted(self) -> bool:
        """Whether no attempts are left."""
        return self.retry_count >= self.max_retries

    def calculate_next_retry_delay(self) -> timedelta:
        """Backoff before the next attempt: 2^retry_count seconds."""
        return timedelta(seconds=2 ** self.retry_count)


class QueueItemResponse(Document):
    """Response model for a queue item's delivery status."""

    id: str = Field(description="Queue item ID")
    action: SubmissionAction = Field(description="Queued action")
    status: QueueItemStatus = Field(description="Queue status")
    retry_count: int = Field(description="Attempts made so far")
    max_retries: int = Field(description="Maximum attempts")
    last_error: Optional[str] = Field(default=None, description="Last error message")
    last_status_code: Optional[int] = Field(default=None, description="Last HTTP status code")
    next_retry_at: Optional[datetime] = Field(default=None, description="Earliest time of the next attempt")
    created_at: datetime = Field(description="Creation timestamp")


class QueueListResponse(Document):
    """Response model for an identity's queue."""

    items: List[QueueItemResponse] = Field(description="Queue items, newest first")
    total: int = Field(description="Number of items")


class QueueStatisticsResponse(Document):
    """Response model for queue statistics."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
