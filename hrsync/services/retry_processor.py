"""Background worker that retries queued submissions."""

import asyncio
from typing import Optional

from .audit import AuditService
from .background import PeriodicWorker
from .conversation_service import ConversationService
from .gateway import ExternalGateway, SubmissionRequest, SubmissionResult
from .submission_queue import SubmissionQueue
from ..errors import GatewayError
from ..models.queue import QueueItemStatus, SubmissionQueueItem
from ..streaming.events import ErrorEvent, StateSnapshotEvent
from ..streaming.hub import NotificationHub


SUBMISSION_FAILED = "SUBMISSION_FAILED"


class SubmissionRetryProcessor(PeriodicWorker):
    """
    Polls the submission queue and retries ready items.

    Each poll first reclaims items whose processing lease expired, then
    locks and retries ready items one by one. Several processors may poll
    the same store; the queue's conditional writes keep them from
    processing an item twice.
    """

    name = "SubmissionRetryProcessor"

    def __init__(
        self,
        queue: SubmissionQueue,
        gateway: ExternalGateway,
        conversations: ConversationService,
        audit: AuditService,
        hub: Optional[NotificationHub] = None,
        interval: float = 10.0,
        batch_size: int = 50,
        processing_timeout: float = 30.0,
    ):
        super().__init__(interval=interval)
        self.queue = queue
        self.gateway = gateway
        self.conversations = conversations
        self.audit = audit
        self.hub = hub
        self.batch_size = batch_size
        self.processing_timeout = processing_timeout

    async def run_once(self) -> int:
        """
        Run one poll.

        Returns:
            Number of items whose attempt was recorded
        """
        for item in await self.queue.reclaim_expired_leases(self.batch_size):
            if item.status == QueueItemStatus.FAILED:
                await self._notify_failure(item)

        items = await self.queue.get_pending_ready_for_retry(self.batch_size)
        if items:
            self.logger.info(f"[{self.name}] found {len(items)} queue items ready for retry")

        processed = 0
        for item in items:
            try:
                if await self.process_item(item):
                    processed += 1
            except Exception:
                self.logger.exception(f"[{self.name}] error processing queue item {item.id}")

        await self.queue.purge_expired()
        return processed

    async def _attempt(self, item: SubmissionQueueItem) -> SubmissionResult:
        request = SubmissionRequest(
            owner_identity=item.owner_identity,
            action=item.action,
            timestamp=item.timestamp,
            notes=item.user_message,
        )
        try:
            return await asyncio.wait_for(self.gateway.submit(request), timeout=self.processing_timeout)
        except asyncio.TimeoutError:
            return SubmissionResult(
                success=False,
                error_message=f"HR API call exceeded {self.processing_timeout}s",
                status_code=504,
            )
        except GatewayError as e:
            return SubmissionResult(success=False, error_message=str(e), status_code=e.status_code)
        except Exception as e:
            self.logger.error(f"[{self.name}] unexpected error submitting queue item {item.id}: {e}")
            return SubmissionResult(success=False, error_message=str(e), status_code=500)

    async def process_item(self, item: SubmissionQueueItem) -> bool:
        """
        Lock, retry and record one item.

        Returns:
            False if another worker owns the item or got to it first
        """
        if not await self.queue.try_lock(item):
            return False

        started = self.queue.clock()
        result = await self._attempt(item)
        finished = self.queue.clock()

        await self.audit.record_submission(
            owner_identity=item.owner_identity,
            action=item.action.value,
            timestamp=finished,
            success=result.success,
            status_code=result.status_code,
            error_message=result.error_message,
            conversation_thread_id=item.conversation_thread_id,
            message_id=item.message_id,
            request_data={"queueItemId": item.id, "attempt": item.retry_count + 1},
            response_data=result.response or None,
            duration_ms=int((finished - started).total_seconds() * 1000),
        )

        if not await self.queue.update_after_retry(item, result.success, result.error_message, result.status_code):
            return False

        if item.status == QueueItemStatus.COMPLETED:
            await self._on_success(item)
        elif item.status == QueueItemStatus.FAILED:
            await self._notify_failure(item)
        return True

    async def _on_success(self, item: SubmissionQueueItem) -> None:
        if not item.conversation_thread_id:
            return
        thread = await self.conversations.apply_confirmed_action(
            item.owner_identity,
            item.conversation_thread_id,
            item.action,
            item.timestamp,
            confirmation_id=item.id,
        )
        if thread is not None and self.hub is not None:
            self.hub.publish(item.owner_identity, StateSnapshotEvent(state=thread.state.to_snapshot()))

    async def _notify_failure(self, item: SubmissionQueueItem) -> None:
        """Tell the user now if they are connected, otherwise on their next message."""
        label = item.action.value.replace("-", " ")
        message = (
            f"Your {label} could not be submitted after {item.retry_count} attempts. "
            f"Please try again or contact HR."
        )
        details = {
            "queueItemId": item.id,
            "action": item.action.value,
            "retryCount": item.retry_count,
            "statusCode": item.last_status_code,
            "lastError": item.last_error,
        }

        delivered = 0
        if self.hub is not None:
            delivered = self.hub.publish(item.owner_identity, ErrorEvent(
                code=SUBMISSION_FAILED,
                message=message,
                details=details,
                recoverable=False,
            ))

        if delivered == 0 and item.conversation_thread_id:
            await self.conversations.add_pending_notice(
                item.owner_identity,
                item.conversation_thread_id,
                {"code": SUBMISSION_FAILED, "message": message, "details": details},
            )
