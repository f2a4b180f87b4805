"""In-process conversation store for local development and tests."""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .base import ConversationStore
from ...errors import ThreadConflictError, ThreadNotFoundError
from ...models.conversation import ConversationThread
from ...models.deletion import ConversationDeletionRequest, DeletionRequestStatus
from ...models.queue import SubmissionQueueItem, QueueItemStatus


Key = Tuple[str, str]


class InMemoryConversationStore(ConversationStore):
    """
    Conversation store kept in dictionaries.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    backend_name = "memory"

    def __init__(self):
        super().__init__()
        self._threads: Dict[Key, ConversationThread] = {}
        self._deletion_requests: Dict[Key, ConversationDeletionRequest] = {}
        self._queue: Dict[Key, SubmissionQueueItem] = {}

    @staticmethod
    def _key(doc_id: str, owner_identity: str) -> Key:
        return (owner_identity, doc_id)

    # Threads

    async def get_thread(self, thread_id: str, owner_identity: str) -> Optional[ConversationThread]:
        thread = self._threads.get(self._key(thread_id, owner_identity))
        return thread.model_copy(deep=True) if thread else None

    async def create_thread(self, thread: ConversationThread) -> ConversationThread:
        key = self._key(thread.id, thread.owner_identity)
        if key in self._threads:
            raise ValueError(f"Conversation thread {thread.id} already exists")
        self._threads[key] = thread.model_copy(deep=True)
        return thread

    async def update_thread(self, thread: ConversationThread) -> ConversationThread:
        key = self._key(thread.id, thread.owner_identity)
        current = self._threads.get(key)
        if current is None:
            raise ThreadNotFoundError(thread.id, thread.owner_identity)
        if current.version != thread.version:
            raise ThreadConflictError(thread.id, thread.owner_identity)
        thread.version += 1
        self._threads[key] = thread.model_copy(deep=True)
        return thread

    async def get_recent_threads(self, owner_identity: str, limit: int = 10) -> List[ConversationThread]:
        threads = [t for (owner, _), t in self._threads.items() if owner == owner_identity]
        threads.sort(key=lambda t: t.updated_at, reverse=True)
        return [t.model_copy(deep=True) for t in threads[:limit]]

    async def delete_thread(self, thread_id: str, owner_identity: str) -> bool:
        return self._threads.pop(self._key(thread_id, owner_identity), None) is not None

    async def delete_all_conversations(self, owner_identity: str) -> int:
        keys = [key for key in self._threads if key[0] == owner_identity]
        for key in keys:
            del self._threads[key]
        self.logger.info(f"Deleted {len(keys)} conversation threads for {owner_identity}")
        return len(keys)

    # Deletion requests

    async def save_deletion_request(self, request: ConversationDeletionRequest) -> ConversationDeletionRequest:
        self._deletion_requests[self._key(request.id, request.owner_identity)] = request.model_copy(deep=True)
        return request

    async def update_deletion_request(
        self,
        request: ConversationDeletionRequest,
        expected_status: DeletionRequestStatus,
    ) -> bool:
        key = self._key(request.id, request.owner_identity)
        current = self._deletion_requests.get(key)
        if current is None or current.status != expected_status:
            return False
        self._deletion_requests[key] = request.model_copy(deep=True)
        return True

    async def get_deletion_request(self, request_id: str, owner_identity: str) -> Optional[ConversationDeletionRequest]:
        request = self._deletion_requests.get(self._key(request_id, owner_identity))
        return request.model_copy(deep=True) if request else None

    async def get_deletion_requests_by_identity(self, owner_identity: str) -> List[ConversationDeletionRequest]:
        requests = [r for (owner, _), r in self._deletion_requests.items() if owner == owner_identity]
        requests.sort(key=lambda r: r.requested_at, reverse=True)
        return [r.model_copy(deep=True) for r in requests]

    async def get_all_pending_deletion_requests(self) -> List[ConversationDeletionRequest]:
        requests = [r for r in self._deletion_requests.values() if r.status == DeletionRequestStatus.PENDING]
        requests.sort(key=lambda r: r.scheduled_deletion_at)
        return [r.model_copy(deep=True) for r in requests]

    # Submission queue

    async def save_queue_item(self, item: SubmissionQueueItem) -> SubmissionQueueItem:
        self._queue[self._key(item.id, item.owner_identity)] = item.model_copy(deep=True)
        return item

    async def get_queue_item(self, item_id: str, owner_identity: str) -> Optional[SubmissionQueueItem]:
        item = self._queue.get(self._key(item_id, owner_identity))
        return item.model_copy(deep=True) if item else None

    async def replace_queue_item(self, item: SubmissionQueueItem, expected_version: int) -> bool:
        key = self._key(item.id, item.owner_identity)
        current = self._queue.get(key)
        if current is None or current.version != expected_version:
            return False
        self._queue[key] = item.model_copy(deep=True)
        return True

    async def get_ready_queue_items(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        items = [
            i for i in self._queue.values()
            if i.status == QueueItemStatus.PENDING and i.next_retry_at is not None and i.next_retry_at <= now
        ]
        items.sort(key=lambda i: i.next_retry_at)
        return [i.model_copy(deep=True) for i in items[:limit]]

    async def get_expired_leases(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        items = [
            i for i in self._queue.values()
            if i.status == QueueItemStatus.PROCESSING and i.lease_expires_at is not None and i.lease_expires_at <= now
        ]
        items.sort(key=lambda i: i.lease_expires_at)
        return [i.model_copy(deep=True) for i in items[:limit]]

    async def get_queue_items_by_identity(self, owner_identity: str) -> List[SubmissionQueueItem]:
        items = [i for (owner, _), i in self._queue.items() if owner == owner_identity]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [i.model_copy(deep=True) for i in items]

    async def count_queue_items_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self._queue.values():
            counts[item.status.value] = counts.get(item.status.value, 0) + 1
        return counts

    async def delete_queue_item(self, item_id: str, owner_identity: str) -> bool:
        return self._queue.pop(self._key(item_id, owner_identity), None) is not None

    async def purge_expired_queue_items(self, now: datetime) -> int:
        keys = [
            key for key, item in self._queue.items()
            if item.is_terminal and item.expires_at is not None and item.expires_at <= now
        ]
        for key in keys:
            del self._queue[key]
        return len(keys)
