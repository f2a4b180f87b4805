"""Services package."""

from .submission_queue import SubmissionQueue
from .retry_processor import SubmissionRetryProcessor
from .events import EventBus, SubmissionFailedEvent, SubmissionFailedHandler
from .gateway import (
    CachedSecret,
    ExternalGateway,
    HttpHRGateway,
    SubmissionRequest,
    SubmissionResult,
)
from .conversation_service import ConversationService
from .session_manager import SessionManager
from .deletion import DeletionLifecycle, DeletionProcessor, LoggingNotifier, Notifier
from .audit import AuditService, AuditTrail
from .intent import IntentClassifier, KeywordIntentClassifier
from .agent import ConversationAgent
from .container import ServiceContainer, build_services

__all__ = [
    "SubmissionQueue",
    "SubmissionRetryProcessor",
    "EventBus",
    "SubmissionFailedEvent",
    "SubmissionFailedHandler",
    "CachedSecret",
    "ExternalGateway",
    "HttpHRGateway",
    "SubmissionRequest",
    "SubmissionResult",
    "ConversationService",
    "SessionManager",
    "DeletionLifecycle",
    "DeletionProcessor",
    "LoggingNotifier",
    "Notifier",
    "AuditService",
    "AuditTrail",
    "IntentClassifier",
    "KeywordIntentClassifier",
    "ConversationAgent",
    "ServiceContainer",
    "build_services",
]
