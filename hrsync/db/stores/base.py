"""Abstract conversation store."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ...models.conversation import ConversationThread
from ...models.deletion import ConversationDeletionRequest, DeletionRequestStatus
from ...models.queue import SubmissionQueueItem
from ...utils.logger import get_app_logger


class ConversationStore(ABC):
    """
    Document store for conversation threads, deletion requests and queued
    submissions.

    Every document is keyed by ``(id, owner_identity)``. A write followed by a
    read on the same owner identity returns the write. Implementations must be
    interchangeable: callers depend on this interface only.
    """

    backend_name: str = "abstract"

    def __init__(self):
        self.logger = get_app_logger()

    # Threads

    @abstractmethod
    async def get_thread(self, thread_id: str, owner_identity: str) -> Optional[ConversationThread]:
        """Get a thread, or None if it does not exist."""

    @abstractmethod
    async def create_thread(self, thread: ConversationThread) -> ConversationThread:
        """Insert a new thread."""

    @abstractmethod
    async def update_thread(self, thread: ConversationThread) -> ConversationThread:
        """
        Replace an existing thread if the stored copy still has ``thread.version``.

        On success ``thread.version`` is incremented to match the stored copy.

        Raises:
            ThreadNotFoundError: If the thread does not exist, including when
                it was deleted. A deleted thread is never recreated.
            ThreadConflictError: If another writer saved the thread since it
                was read
        """

    @abstractmethod
    async def get_recent_threads(self, owner_identity: str, limit: int = 10) -> List[ConversationThread]:
        """Threads of one identity, newest ``updated_at`` first."""

    @abstractmethod
    async def delete_thread(self, thread_id: str, owner_identity: str) -> bool:
        """Delete one thread. Returns True if it existed."""

    @abstractmethod
    async def delete_all_conversations(self, owner_identity: str) -> int:
        """Delete every thread of an identity and return how many were deleted."""

    # Deletion requests

    @abstractmethod
    async def save_deletion_request(self, request: ConversationDeletionRequest) -> ConversationDeletionRequest:
        """Insert a deletion request."""

    @abstractmethod
    async def update_deletion_request(
        self,
        request: ConversationDeletionRequest,
        expected_status: DeletionRequestStatus,
    ) -> bool:
        """
        Replace a deletion request only if its stored status is ``expected_status``.

        Returns:
            True if the write happened, False if the request moved on or no
            longer exists
        """

    @abstractmethod
    async def get_deletion_request(self, request_id: str, owner_identity: str) -> Optional[ConversationDeletionRequest]:
        """Get a deletion request, or None."""

    @abstractmethod
    async def get_deletion_requests_by_identity(self, owner_identity: str) -> List[ConversationDeletionRequest]:
        """Deletion requests of one identity, newest first."""

    @abstractmethod
    async def get_all_pending_deletion_requests(self) -> List[ConversationDeletionRequest]:
        """Pending deletion requests of every identity, earliest schedule first."""

    # Submission queue

    @abstractmethod
    async def save_queue_item(self, item: SubmissionQueueItem) -> SubmissionQueueItem:
        """Insert a queue item."""

    @abstractmethod
    async def get_queue_item(self, item_id: str, owner_identity: str) -> Optional[SubmissionQueueItem]:
        """Get a queue item, or None."""

    @abstractmethod
    async def replace_queue_item(self, item: SubmissionQueueItem, expected_version: int) -> bool:
        """
        Write ``item`` only if the stored copy still has ``expected_version``.

        Returns:
            True if the write happened, False if another writer got there first
            or the item no longer exists
        """

    @abstractmethod
    async def get_ready_queue_items(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        """Pending items with ``next_retry_at <= now``, earliest first."""

    @abstractmethod
    async def get_expired_leases(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        """Processing items whose lease expired at or before ``now``."""

    @abstractmethod
    async def get_queue_items_by_identity(self, owner_identity: str) -> List[SubmissionQueueItem]:
        """Queue items of one identity, newest first."""

    @abstractmethod
    async def count_queue_items_by_status(self) -> Dict[str, int]:
        """Number of queue items per status value."""

    @abstractmethod
    async def delete_queue_item(self, item_id: str, owner_identity: str) -> bool:
        """Delete a queue item. Returns True if it existed."""

    @abstractmethod
    async def purge_expired_queue_items(self, now: datetime) -> int:
        """Delete terminal items whose ``expires_at`` has passed."""

    async def close(self) -> None:
        """Release backend resources."""
