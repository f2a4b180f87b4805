"""Right-to-erasure lifecycle for an identity's conversations."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .audit import AuditService
from .background import PeriodicWorker
from ..db.stores import ConversationStore
from ..errors import (
    DeletionRequestConflictError,
    DeletionRequestNotFoundError,
    InvalidDeletionTransitionError,
)
from ..models.audit import DeletionAuditAction
from ..models.deletion import (
    DELETION_WINDOW_DAYS,
    ConversationDeletionRequest,
    DeletionRequestStatus,
)
from ..utils.clock import Clock, utcnow
from ..utils.logger import get_app_logger


DEFAULT_CANCELLATION_REASON = "Cancelled by user"


class Notifier(ABC):
    """Sends deletion notices to the user."""

    @abstractmethod
    async def send_request_confirmation(self, request: ConversationDeletionRequest) -> None:
        """Tell the user their request was received and when it will run."""

    @abstractmethod
    async def send_cancellation_notice(self, request: ConversationDeletionRequest) -> None:
        """Tell the user their request was cancelled."""

    @abstractmethod
    async def send_completion_confirmation(self, request: ConversationDeletionRequest) -> None:
        """Tell the user their conversations were deleted."""


class LoggingNotifier(Notifier):
    """Notifier that only writes the notices to the application log."""

    def __init__(self):
        self.logger = get_app_logger()

    def _recipient(self, request: ConversationDeletionRequest) -> str:
        return request.email or request.owner_identity

    async def send_request_confirmation(self, request: ConversationDeletionRequest) -> None:
        self.logger.info(
            f"Notice to {self._recipient(request)}: deletion request {request.id} received, "
            f"scheduled for {request.scheduled_deletion_at:%Y-%m-%d}"
        )

    async def send_cancellation_notice(self, request: ConversationDeletionRequest) -> None:
        self.logger.info(f"Notice to {self._recipient(request)}: deletion request {request.id} cancelled")

    async def send_completion_confirmation(self, request: ConversationDeletionRequest) -> None:
        self.logger.info(
            f"Notice to {self._recipient(request)}: deletion request {request.id} completed, "
            f"{request.conversations_deleted} conversations deleted"
        )


class DeletionLifecycle:
    """
    Pending -> Processing -> Completed | Failed, and Pending -> Cancelled.

    Terminal requests never change. A failed deletion is not retried; it
    needs an operator. Every transition is written to the deletion audit
    trail.
    """

    def __init__(
        self,
        store: ConversationStore,
        audit: AuditService,
        window_days: int = DELETION_WINDOW_DAYS,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.audit = audit
        self.window_days = window_days
        self.clock = clock
        self.logger = get_app_logger()

    async def get_request(self, request_id: str, owner_identity: str) -> Optional[ConversationDeletionRequest]:
        return await self.store.get_deletion_request(request_id, owner_identity)

    async def get_requests(self, owner_identity: str) -> List[ConversationDeletionRequest]:
        return await self.store.get_deletion_requests_by_identity(owner_identity)

    async def get_pending_request(self, owner_identity: str) -> Optional[ConversationDeletionRequest]:
        for request in await self.store.get_deletion_requests_by_identity(owner_identity):
            if request.status == DeletionRequestStatus.PENDING:
                return request
        return None

    async def get_requests_ready_for_processing(self) -> List[ConversationDeletionRequest]:
        now = self.clock()
        return [r for r in await self.store.get_all_pending_deletion_requests() if r.is_ready_for_processing(now)]

    async def submit_request(
        self,
        owner_identity: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        origin_ip: Optional[str] = None,
    ) -> ConversationDeletionRequest:
        """
        Schedule deletion of every conversation of an identity.

        Raises:
            DeletionRequestConflictError: If a pending request already exists
        """
        existing = await self.get_pending_request(owner_identity)
        if existing is not None:
            self.logger.warning(f"{owner_identity} already has pending deletion request {existing.id}")
            raise DeletionRequestConflictError(
                f"A deletion request is already pending for this identity. "
                f"Scheduled for: {existing.scheduled_deletion_at:%Y-%m-%d}",
                existing_request_id=existing.id,
            )

        now = self.clock()
        request = ConversationDeletionRequest.create(
            owner_identity=owner_identity,
            now=now,
            window_days=self.window_days,
            email=email,
            display_name=display_name,
            request_origin_ip=origin_ip,
        )
        await self.store.save_deletion_request(request)
        await self.audit.record_deletion(
            request.id, owner_identity, DeletionAuditAction.SUBMITTED, now,
            details=f"Scheduled for {request.scheduled_deletion_at.isoformat()}",
            ip_address=origin_ip,
        )
        self.logger.info(
            f"Deletion request {request.id} submitted for {owner_identity}, "
            f"scheduled for {request.scheduled_deletion_at.isoformat()}"
        )
        return request

    async def _load(self, request_id: str, owner_identity: str) -> ConversationDeletionRequest:
        request = await self.store.get_deletion_request(request_id, owner_identity)
        if request is None:
            raise DeletionRequestNotFoundError(f"Deletion request {request_id} not found")
        return request

    async def cancel_request(
        self,
        request_id: str,
        owner_identity: str,
        reason: Optional[str] = None,
    ) -> ConversationDeletionRequest:
        """
        Cancel a pending request.

        Raises:
            DeletionRequestNotFoundError: If the request does not exist
            InvalidDeletionTransitionError: If the request is not pending
        """
        request = await self._load(request_id, owner_identity)
        if not request.can_be_cancelled():
            raise InvalidDeletionTransitionError(
                f"Cannot cancel deletion request in status: {request.status.value}"
            )

        now = self.clock()
        request.status = DeletionRequestStatus.CANCELLED
        request.cancellation_reason = reason or DEFAULT_CANCELLATION_REASON
        request.completed_at = now
        if not await self.store.update_deletion_request(request, DeletionRequestStatus.PENDING):
            raise InvalidDeletionTransitionError(
                f"Deletion request {request_id} is no longer pending and cannot be cancelled"
            )
        await self.audit.record_deletion(
            request_id, owner_identity, DeletionAuditAction.CANCELLED, now,
            details=request.cancellation_reason,
        )
        self.logger.info(f"Deletion request {request_id} cancelled for {owner_identity}")
        return request

    async def process_request(self, request_id: str, owner_identity: str) -> ConversationDeletionRequest:
        """
        Delete every conversation of the identity.

        Raises:
            DeletionRequestNotFoundError: If the request does not exist
            InvalidDeletionTransitionError: If the request is not pending or
                not yet due
            Exception: Whatever the deletion raised, after the request was
                marked Failed
        """
        request = await self._load(request_id, owner_identity)
        now = self.clock()
        if not request.is_ready_for_processing(now):
            raise InvalidDeletionTransitionError(
                f"Deletion request {request_id} is not ready for processing. "
                f"Status: {request.status.value}, scheduled: {request.scheduled_deletion_at.isoformat()}"
            )

        request.status = DeletionRequestStatus.PROCESSING
        if not await self.store.update_deletion_request(request, DeletionRequestStatus.PENDING):
            raise InvalidDeletionTransitionError(
                f"Deletion request {request_id} is no longer pending and cannot be processed"
            )

        self.logger.info(f"Processing deletion request {request_id} for {owner_identity}")
        await self.audit.record_deletion(request_id, owner_identity, DeletionAuditAction.PROCESSING_STARTED, now)
        try:
            deleted = await self.store.delete_all_conversations(owner_identity)

            request.status = DeletionRequestStatus.COMPLETED
            request.completed_at = self.clock()
            request.conversations_deleted = deleted
            await self.store.update_deletion_request(request, DeletionRequestStatus.PROCESSING)
        except Exception as e:
            self.logger.error(f"Failed to process deletion request {request_id} for {owner_identity}: {e}")
            request.status = DeletionRequestStatus.FAILED
            request.error_message = str(e)
            request.completed_at = self.clock()
            await self.store.update_deletion_request(request, DeletionRequestStatus.PROCESSING)
            await self.audit.record_deletion(
                request_id, owner_identity, DeletionAuditAction.FAILED, request.completed_at,
                error_message=str(e),
            )
            raise

        await self.audit.record_deletion(
            request_id, owner_identity, DeletionAuditAction.COMPLETED, request.completed_at,
            conversations_deleted=deleted,
        )
        self.logger.info(
            f"Deletion request {request_id} completed, deleted {deleted} conversations for {owner_identity}"
        )
        return request


class DeletionProcessor(PeriodicWorker):
    """Processes due deletion requests and confirms them to the user."""

    name = "DeletionProcessor"

    def __init__(
        self,
        lifecycle: DeletionLifecycle,
        notifier: Notifier,
        interval: float = 24 * 60 * 60,
        initial_delay: float = 300.0,
    ):
        super().__init__(interval=interval, initial_delay=initial_delay)
        self.lifecycle = lifecycle
        self.notifier = notifier

    async def run_once(self) -> int:
        """
        Process every due request once.

        Returns:
            Number of requests completed
        """
        ready = await self.lifecycle.get_requests_ready_for_processing()
        if not ready:
            self.logger.info(f"[{self.name}] no deletion requests ready for processing")
            return 0

        self.logger.info(f"[{self.name}] processing {len(ready)} deletion requests")
        completed = 0
        for request in ready:
            try:
                done = await self.lifecycle.process_request(request.id, request.owner_identity)
            except Exception as e:
                self.logger.error(f"[{self.name}] deletion request {request.id} failed: {e}")
                continue

            completed += 1
            try:
                await self.notifier.send_completion_confirmation(done)
                await self.lifecycle.audit.record_deletion(
                    done.id, done.owner_identity, DeletionAuditAction.CONFIRMATION_SENT,
                    self.lifecycle.clock(),
                    details=f"Confirmation sent to {done.email or done.owner_identity}",
                )
            except Exception as e:
                self.logger.error(f"[{self.name}] failed to confirm deletion request {done.id}: {e}")

        self.logger.info(f"[{self.name}] completed {completed} of {len(ready)} deletion requests")
        return completed
