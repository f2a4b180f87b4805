"""Conversation deletion request documents and API models."""

import math
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from pydantic import Field

from .base import Document
from ..utils.clock import utcnow


DELETION_WINDOW_DAYS = 30
# Seven years of retention for compliance records
DELETION_REQUEST_TTL_SECONDS = 7 * 365 * 24 * 60 * 60


class DeletionRequestStatus(str, Enum):
    """Lifecycle state of a deletion request."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


TERMINAL_DELETION_STATUSES = (
    DeletionRequestStatus.COMPLETED,
    DeletionRequestStatus.CANCELLED,
    DeletionRequestStatus.FAILED,
)


class ConversationDeletionRequest(Document):
    """A user's request to erase every conversation they own."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Request ID")
    owner_identity: str = Field(description="Owner identity (partition key)")
    email: Optional[str] = Field(default=None, description="Where to send the confirmation")
    display_name: Optional[str] = Field(default=None, description="Name used in the confirmation")
    requested_at: datetime = Field(default_factory=utcnow, description="When the request was made")
    scheduled_deletion_at: datetime = Field(description="Earliest time the deletion may run")
    status: DeletionRequestStatus = Field(default=DeletionRequestStatus.PENDING, description="Request status")
    completed_at: Optional[datetime] = Field(default=None, description="When the request reached a terminal state")
    conversations_deleted: int = Field(default=0, description="Threads deleted")
    cancellation_reason: Optional[str] = Field(default=None, description="Why the request was cancelled")
    error_message: Optional[str] = Field(default=None, description="Failure detail")
    request_origin_ip: Optional[str] = Field(default=None, description="Client IP of the request")
    ttl: int = Field(default=DELETION_REQUEST_TTL_SECONDS, description="Time to live in seconds")

    @classmethod
    def create(
        cls,
        owner_identity: str,
        now: datetime,
        window_days: int = DELETION_WINDOW_DAYS,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        request_origin_ip: Optional[str] = None,
    ) -> "ConversationDeletionRequest":
        return cls(
            owner_identity=owner_identity,
            email=email,
            display_name=display_name,
            requested_at=now,
            scheduled_deletion_at=now + timedelta(days=window_days),
            request_origin_ip=request_origin_ip,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DELETION_STATUSES

    def is_ready_for_processing(self, now: datetime) -> bool:
        """Pending and past the scheduled deletion time."""
        return self.status == DeletionRequestStatus.PENDING and now >= self.scheduled_deletion_at

    def can_be_cancelled(self) -> bool:
        return self.status == DeletionRequestStatus.PENDING

    def days_until_deletion(self, now: datetime) -> int:
        """Whole days left before processing, rounded up, never negative."""
        if self.status != DeletionRequestStatus.PENDING:
            return 0
        remaining = (self.scheduled_deletion_at - now).total_seconds()
        return max(0, math.ceil(remaining / 86400))


class CreateDeletionRequest(Document):
    """Request body for submitting a deletion request."""

    email: Optional[str] = Field(default=None, description="Confirmation email address")
    display_name: Optional[str] = Field(default=None, description="Name used in the confirmation")


class CancelDeletionRequest(Document):
    """Request body for cancelling a deletion request."""

    reason: Optional[str] = Field(default=None, description="Cancellation reason", max_length=500)


class DeletionRequestResponse(Document):
    """Response model for a deletion request."""

    id: str = Field(description="Request ID")
    status: DeletionRequestStatus = Field(description="Request status")
    requested_at: datetime = Field(description="When the request was made")
    scheduled_deletion_at: datetime = Field(description="Earliest time the deletion may run")
    days_until_deletion: int = Field(description="Whole days left before processing")
    can_be_cancelled: bool = Field(description="Whether the request can still be cancelled")
    completed_at: Optional[datetime] = Field(default=None, description="Completion time")
    conversations_deleted: int = Field(default=0, description="Threads deleted")
    cancellation_reason: Optional[str] = Field(default=None, description="Why the request was cancelled")
    error_message: Optional[str] = Field(default=None, description="Failure detail")
