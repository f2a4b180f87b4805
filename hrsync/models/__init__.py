"""Pydantic documents and API request/response models."""

from .base import Document
from .conversation import (
    MessageRole,
    ToolCallStatus,
    ToolCallError,
    ToolCallRecord,
    ConversationMessage,
    ConversationState,
    UserMetadata,
    ConversationThread,
    SendMessageRequest,
    ThreadSummaryResponse,
    ThreadListResponse,
)
from .queue import (
    SubmissionAction,
    QueueItemStatus,
    SubmissionQueueItem,
    QueueItemResponse,
    QueueListResponse,
    QueueStatisticsResponse,
)
from .deletion import (
    DeletionRequestStatus,
    ConversationDeletionRequest,
    CreateDeletionRequest,
    CancelDeletionRequest,
    DeletionRequestResponse,
)
from .session import ActiveSession, SessionCollisionWarning, ActiveSessionsResponse
from .audit import AuditError, AuditLogEntry, DeletionAuditAction, DeletionAuditLogEntry

__all__ = [
    "Document",
    "MessageRole",
    "ToolCallStatus",
    "ToolCallError",
    "ToolCallRecord",
    "ConversationMessage",
    "ConversationState",
    "UserMetadata",
    "ConversationThread",
    "SendMessageRequest",
    "ThreadSummaryResponse",
    "ThreadListResponse",
    "SubmissionAction",
    "QueueItemStatus",
    "SubmissionQueueItem",
    "QueueItemResponse",
    "QueueListResponse",
    "QueueStatisticsResponse",
    "DeletionRequestStatus",
    "ConversationDeletionRequest",
    "CreateDeletionRequest",
    "CancelDeletionRequest",
    "DeletionRequestResponse",
    "ActiveSession",
    "SessionCollisionWarning",
    "ActiveSessionsResponse",
    "AuditError",
    "AuditLogEntry",
    "DeletionAuditAction",
    "DeletionAuditLogEntry",
]
