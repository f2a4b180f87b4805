"""Durable retry queue for clock actions the HR system did not accept."""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..db.stores import ConversationStore
from ..models.queue import (
    DEFAULT_MAX_RETRIES,
    QueueItemStatus,
    QueueStatisticsResponse,
    SubmissionAction,
    SubmissionQueueItem,
)
from ..utils.clock import Clock, utcnow
from ..utils.logger import get_app_logger


LEASE_EXPIRED_STATUS_CODE = 504
LEASE_EXPIRED_ERROR = "processing lease expired"


class SubmissionQueue:
    """
    At-least-once retry queue with exponential backoff.

    Every attempt, successful or not, increments ``retry_count``. A failed
    attempt waits ``2^retry_count`` seconds before the next one, so an item
    that keeps failing is retried after 1s, 2s and 4s and then marked
    ``failed``. Status changes are conditional writes on the item's version,
    so two workers never advance the same item.
    """

    def __init__(
        self,
        store: ConversationStore,
        max_retries: int = DEFAULT_MAX_RETRIES,
        processing_timeout: float = 30.0,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.max_retries = max_retries
        self.processing_timeout = processing_timeout
        self.clock = clock
        self.logger = get_app_logger()

    async def enqueue(
        self,
        owner_identity: str,
        action: SubmissionAction,
        timestamp: datetime,
        conversation_thread_id: Optional[str] = None,
        message_id: Optional[str] = None,
        user_message: Optional[str] = None,
        error_message: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> SubmissionQueueItem:
        """
        Queue an action for retry.

        Never raises. If the store write fails the error is logged and the
        unsaved item is still returned so the caller can report "queued".

        Returns:
            The queued item
        """
        now = self.clock()
        item = SubmissionQueueItem(
            owner_identity=owner_identity,
            action=action,
            timestamp=timestamp,
            user_message=user_message,
            conversation_thread_id=conversation_thread_id,
            message_id=message_id,
            max_retries=self.max_retries,
            created_at=now,
            last_error=error_message,
            last_status_code=status_code,
            context_data=dict(context or {}),
        )
        item.next_retry_at = now + item.calculate_next_retry_delay()

        try:
            await self.store.save_queue_item(item)
            self.logger.info(
                f"Queued {action.value} for {owner_identity} as {item.id}, "
                f"first retry at {item.next_retry_at.isoformat()}"
            )
        except Exception as e:
            self.logger.error(f"Failed to persist queue item {item.id} for {owner_identity}: {e}")

        return item

    async def get_pending_ready_for_retry(self, limit: int = 50) -> List[SubmissionQueueItem]:
        """Pending items whose next_retry_at has passed, earliest first."""
        return await self.store.get_ready_queue_items(self.clock(), limit)

    async def try_lock(self, item: SubmissionQueueItem) -> bool:
        """
        Move a pending item to processing.

        On success ``item`` is updated in place with the new status, lease and
        version. Of several concurrent callers holding the same version only
        one gets True.
        """
        if item.status != QueueItemStatus.PENDING:
            return False

        now = self.clock()
        expected_version = item.version
        locked = item.model_copy(update={
            "status": QueueItemStatus.PROCESSING,
            "lease_expires_at": now + timedelta(seconds=self.processing_timeout),
            "version": expected_version + 1,
        })

        if not await self.store.replace_queue_item(locked, expected_version):
            self.logger.debug(f"Queue item {item.id} already locked by another worker")
            return False

        item.status = locked.status
        item.lease_expires_at = locked.lease_expires_at
        item.version = locked.version
        return True

    async def update_after_retry(
        self,
        item: SubmissionQueueItem,
        success: bool,
        error_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> bool:
        """
        Record the outcome of an attempt on a locked item.

        Returns:
            True if the outcome was written. False if the item is terminal or
            another worker changed it since it was locked.
        """
        if item.is_terminal:
            self.logger.warning(f"Ignoring update for terminal queue item {item.id}")
            return False

        now = self.clock()
        expected_version = item.version
        updated = self._apply_outcome(item, success, error_message, status_code, now)

        if not await self.store.replace_queue_item(updated, expected_version):
            self.logger.warning(f"Stale update for queue item {item.id} dropped")
            return False

        self._copy_into(updated, item)
        self._log_outcome(item)
        return True

    async def reclaim_expired_leases(self, limit: int = 50) -> List[SubmissionQueueItem]:
        """
        Treat processing items with an expired lease as failed attempts.

        Returns:
            Items this caller reclaimed, in their new state
        """
        now = self.clock()
        reclaimed = []
        for item in await self.store.get_expired_leases(now, limit):
            expected_version = item.version
            updated = self._apply_outcome(item, False, LEASE_EXPIRED_ERROR, LEASE_EXPIRED_STATUS_CODE, now)
            if await self.store.replace_queue_item(updated, expected_version):
                self.logger.warning(f"Reclaimed queue item {item.id} after its processing lease expired")
                self._log_outcome(updated)
                reclaimed.append(updated)
        return reclaimed

    async def get_identity_queue(self, owner_identity: str) -> List[SubmissionQueueItem]:
        return await self.store.get_queue_items_by_identity(owner_identity)

    async def get_item(self, item_id: str, owner_identity: str) -> Optional[SubmissionQueueItem]:
        return await self.store.get_queue_item(item_id, owner_identity)

    async def get_statistics(self) -> QueueStatisticsResponse:
        counts = await self.store.count_queue_items_by_status()
        return QueueStatisticsResponse(
            pending=counts.get(QueueItemStatus.PENDING.value, 0),
            processing=counts.get(QueueItemStatus.PROCESSING.value, 0),
            completed=counts.get(QueueItemStatus.COMPLETED.value, 0),
            failed=counts.get(QueueItemStatus.FAILED.value, 0),
            total=sum(counts.values()),
        )

    async def purge_expired(self) -> int:
        """Remove terminal items past their expiry."""
        purged = await self.store.purge_expired_queue_items(self.clock())
        if purged:
            self.logger.info(f"Purged {purged} expired queue items")
        return purged

    def _apply_outcome(
        self,
        item: SubmissionQueueItem,
        success: bool,
        error_message: Optional[str],
        status_code: Optional[int],
        now: datetime,
    ) -> SubmissionQueueItem:
        updated = item.model_copy(deep=True)
        updated.retry_count = min(item.retry_count + 1, item.max_retries)
        updated.last_processed_at = now
        updated.lease_expires_at = None
        updated.version = item.version + 1

        if success:
            updated.status = QueueItemStatus.COMPLETED
            updated.next_retry_at = None
            updated.last_error = None
            updated.last_status_code = status_code
        else:
            updated.last_error = error_message
            updated.last_status_code = status_code
            if updated.is_retry_exhausted():
                updated.status = QueueItemStatus.FAILED
                updated.next_retry_at = None
            else:
                updated.status = QueueItemStatus.PENDING
                updated.next_retry_at = now + updated.calculate_next_retry_delay()
        return updated

    @staticmethod
    def _copy_into(source: SubmissionQueueItem, target: SubmissionQueueItem) -> None:
        for name in SubmissionQueueItem.model_fields:
            setattr(target, name, getattr(source, name))

    def _log_outcome(self, item: SubmissionQueueItem) -> None:
        if item.status == QueueItemStatus.COMPLETED:
            self.logger.info(f"Queue item {item.id} completed after {item.retry_count} attempts")
        elif item.status == QueueItemStatus.FAILED:
            self.logger.error(
                f"Queue item {item.id} failed permanently after {item.retry_count} attempts: {item.last_error}"
            )
        else:
            self.logger.info(
                f"Queue item {item.id} attempt {item.retry_count} failed, "
                f"next retry at {item.next_retry_at.isoformat()}"
            )
