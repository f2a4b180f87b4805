"""Wiring of the application services from settings."""

from dataclasses import dataclass
from typing import Optional

from .agent import ConversationAgent
from .audit import AuditService
from .conversation_service import ConversationService
from .deletion import DeletionLifecycle, DeletionProcessor, LoggingNotifier, Notifier
from .events import EventBus, SubmissionFailedEvent, SubmissionFailedHandler
from .gateway import CachedSecret, ExternalGateway, HttpHRGateway, settings_key_loader
from .intent import IntentClassifier, KeywordIntentClassifier
from .retry_processor import SubmissionRetryProcessor
from .session_manager import SessionManager
from .submission_queue import SubmissionQueue
from ..db.stores import ConversationStore
from ..streaming.hub import NotificationHub
from ..utils.clock import Clock, utcnow


@dataclass
class ServiceContainer:
    """Every long-lived service of the application."""

    store: ConversationStore
    event_bus: EventBus
    queue: SubmissionQueue
    gateway: ExternalGateway
    conversations: ConversationService
    sessions: SessionManager
    audit: AuditService
    deletion: DeletionLifecycle
    notifier: Notifier
    hub: NotificationHub
    agent: ConversationAgent
    retry_processor: SubmissionRetryProcessor
    deletion_processor: DeletionProcessor

    async def close(self) -> None:
        await self.retry_processor.stop()
        await self.deletion_processor.stop()
        await self.agent.drain()
        self.hub.close_all()
        if isinstance(self.gateway, HttpHRGateway):
            await self.gateway.close()
        await self.store.close()


def build_services(
    settings,
    store: ConversationStore,
    gateway: Optional[ExternalGateway] = None,
    classifier: Optional[IntentClassifier] = None,
    notifier: Optional[Notifier] = None,
    clock: Clock = utcnow,
) -> ServiceContainer:
    """
    Build the services around a store.

    Args:
        settings: Application settings instance
        store: Conversation store shared by every service
        gateway: HR gateway; defaults to HttpHRGateway from settings
        classifier: Intent classifier; defaults to KeywordIntentClassifier
        notifier: Deletion notifier; defaults to LoggingNotifier
        clock: Time source
    """
    event_bus = EventBus()
    queue = SubmissionQueue(
        store,
        max_retries=settings.queue_max_retries,
        processing_timeout=settings.processing_timeout,
        clock=clock,
    )
    event_bus.subscribe(SubmissionFailedEvent, SubmissionFailedHandler(queue))

    if gateway is None:
        gateway = HttpHRGateway(
            settings.hr_api_base_url,
            CachedSecret(settings_key_loader(settings), settings.hr_api_key_ttl_seconds, clock=clock),
            timeout=settings.hr_request_timeout,
            event_bus=event_bus,
        )
    elif gateway.event_bus is None:
        gateway.event_bus = event_bus

    conversations = ConversationService(store, clock=clock)
    sessions = SessionManager(store, settings.session_active_window_minutes, clock=clock)
    audit = AuditService(settings.audit_log_dir)
    deletion = DeletionLifecycle(store, audit, settings.deletion_window_days, clock=clock)
    notifier = notifier or LoggingNotifier()
    hub = NotificationHub()

    agent = ConversationAgent(
        conversations,
        gateway,
        sessions,
        audit,
        classifier or KeywordIntentClassifier(),
        hub=hub,
        clock=clock,
    )
    retry_processor = SubmissionRetryProcessor(
        queue,
        gateway,
        conversations,
        audit,
        hub=hub,
        interval=settings.queue_poll_interval,
        batch_size=settings.queue_batch_size,
        processing_timeout=settings.processing_timeout,
    )
    deletion_processor = DeletionProcessor(
        deletion,
        notifier,
        interval=settings.deletion_interval_hours * 3600,
        initial_delay=settings.deletion_startup_delay,
    )

    return ServiceContainer(
        store=store,
        event_bus=event_bus,
        queue=queue,
        gateway=gateway,
        conversations=conversations,
        sessions=sessions,
        audit=audit,
        deletion=deletion,
        notifier=notifier,
        hub=hub,
        agent=agent,
        retry_processor=retry_processor,
        deletion_processor=deletion_processor,
    )
