"""Audit trail entries."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import Field

from .base import Document
from ..utils.clock import utcnow


class AuditError(Document):
    """Error recorded with an audit entry."""

    code: str
    message: str


class AuditLogEntry(Document):
    """Record of one call to the HR system."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_identity: str
    action: str
    timestamp: datetime = Field(default_factory=utcnow)
    conversation_thread_id: Optional[str] = None
    message_id: Optional[str] = None
    request_data: Optional[Dict[str, Any]] = None
    response_data: Optional[Dict[str, Any]] = None
    status_code: Optional[int] = None
    error: Optional[AuditError] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    duration_ms: Optional[int] = None


class DeletionAuditAction(str, Enum):
    """Deletion lifecycle events recorded in the deletion audit trail."""

    SUBMITTED = "DeletionRequestSubmitted"
    CANCELLED = "DeletionRequestCancelled"
    PROCESSING_STARTED = "DeletionProcessingStarted"
    COMPLETED = "DeletionCompleted"
    FAILED = "DeletionFailed"
    CONFIRMATION_SENT = "ConfirmationSent"


class DeletionAuditLogEntry(Document):
    """Record of one deletion lifecycle transition."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str
    owner_identity: str
    action: DeletionAuditAction
    timestamp: datetime = Field(default_factory=utcnow)
    details: Optional[str] = None
    ip_address: Optional[str] = None
    error_message: Optional[str] = None
    conversations_deleted: Optional[int] = None
