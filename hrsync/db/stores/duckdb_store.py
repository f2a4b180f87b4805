"""DuckDB conversation store."""

import json
from datetime import datetime
from typing import Dict, List, Optional

from .base import ConversationStore
from ..connection import DatabaseConnection
from ...errors import ThreadConflictError, ThreadNotFoundError
from ...models.conversation import ConversationThread
from ...models.deletion import ConversationDeletionRequest, DeletionRequestStatus
from ...models.queue import SubmissionQueueItem, QueueItemStatus, TERMINAL_QUEUE_STATUSES
from ...utils.clock import to_epoch


class DuckDBConversationStore(ConversationStore):
    """
    Conversation store backed by a DuckDB file.

    Statements run synchronously on the event loop, so each method is atomic
    with respect to other coroutines in the process. Conditional writes filter
    on ``version`` or ``status`` and read the affected row count.
    """

    backend_name = "duckdb"

    def __init__(self, db_conn: DatabaseConnection):
        super().__init__()
        self.db = db_conn

    @property
    def conn(self):
        return self.db.conn

    @staticmethod
    def _dump(document) -> str:
        return json.dumps(document.to_document())

    @staticmethod
    def _affected(result) -> int:
        row = result.fetchone()
        return int(row[0]) if row else 0

    # Threads

    async def get_thread(self, thread_id: str, owner_identity: str) -> Optional[ConversationThread]:
        row = self.conn.execute("""
            SELECT doc FROM conversation_threads
            WHERE id = ? AND owner_id = ?
        """, [thread_id, owner_identity]).fetchone()

        if row:
            return ConversationThread.from_document(json.loads(row[0]))
        return None

    async def create_thread(self, thread: ConversationThread) -> ConversationThread:
        self.conn.execute("""
            INSERT INTO conversation_threads (id, owner_id, session_id, updated_at, version, doc)
            VALUES (?, ?, ?, ?, ?, ?)
        """, [
            thread.id,
            thread.owner_identity,
            thread.session_id,
            to_epoch(thread.updated_at),
            thread.version,
            self._dump(thread)
        ])
        self.logger.debug(f"Created conversation thread {thread.id} for {thread.owner_identity}")
        return thread

    async def update_thread(self, thread: ConversationThread) -> ConversationThread:
        expected_version = thread.version
        thread.version = expected_version + 1
        result = self.conn.execute("""
            UPDATE conversation_threads
            SET session_id = ?, updated_at = ?, version = ?, doc = ?
            WHERE id = ? AND owner_id = ? AND version = ?
        """, [
            thread.session_id,
            to_epoch(thread.updated_at),
            thread.version,
            self._dump(thread),
            thread.id,
            thread.owner_identity,
            expected_version
        ])

        if self._affected(result) == 1:
            return thread

        thread.version = expected_version
        exists = self.conn.execute("""
            SELECT 1 FROM conversation_threads
            WHERE id = ? AND owner_id = ?
        """, [thread.id, thread.owner_identity]).fetchone()
        if exists is None:
            raise ThreadNotFoundError(thread.id, thread.owner_identity)
        raise ThreadConflictError(thread.id, thread.owner_identity)

    async def get_recent_threads(self, owner_identity: str, limit: int = 10) -> List[ConversationThread]:
        rows = self.conn.execute("""
            SELECT doc FROM conversation_threads
            WHERE owner_id = ?
            ORDER BY updated_at DESC
            LIMIT ?
        """, [owner_identity, limit]).fetchall()

        return [ConversationThread.from_document(json.loads(row[0])) for row in rows]

    async def delete_thread(self, thread_id: str, owner_identity: str) -> bool:
        result = self.conn.execute("""
            DELETE FROM conversation_threads
            WHERE id = ? AND owner_id = ?
        """, [thread_id, owner_identity])
        return self._affected(result) > 0

    async def delete_all_conversations(self, owner_identity: str) -> int:
        result = self.conn.execute("""
            DELETE FROM conversation_threads
            WHERE owner_id = ?
        """, [owner_identity])
        deleted = self._affected(result)
        self.logger.info(f"Deleted {deleted} conversation threads for {owner_identity}")
        return deleted

    # Deletion requests

    async def save_deletion_request(self, request: ConversationDeletionRequest) -> ConversationDeletionRequest:
        self.conn.execute("""
            INSERT INTO deletion_requests (id, owner_id, status, requested_at, scheduled_deletion_at, doc)
            VALUES (?, ?, ?, ?, ?, ?)
        """, [
            request.id,
            request.owner_identity,
            request.status.value,
            to_epoch(request.requested_at),
            to_epoch(request.scheduled_deletion_at),
            self._dump(request)
        ])
        return request

    async def update_deletion_request(
        self,
        request: ConversationDeletionRequest,
        expected_status: DeletionRequestStatus,
    ) -> bool:
        result = self.conn.execute("""
            UPDATE deletion_requests
            SET status = ?, scheduled_deletion_at = ?, doc = ?
            WHERE id = ? AND owner_id = ? AND status = ?
        """, [
            request.status.value,
            to_epoch(request.scheduled_deletion_at),
            self._dump(request),
            request.id,
            request.owner_identity,
            expected_status.value
        ])
        return self._affected(result) == 1

    async def get_deletion_request(self, request_id: str, owner_identity: str) -> Optional[ConversationDeletionRequest]:
        row = self.conn.execute("""
            SELECT doc FROM deletion_requests
            WHERE id = ? AND owner_id = ?
        """, [request_id, owner_identity]).fetchone()

        if row:
            return ConversationDeletionRequest.from_document(json.loads(row[0]))
        return None

    async def get_deletion_requests_by_identity(self, owner_identity: str) -> List[ConversationDeletionRequest]:
        rows = self.conn.execute("""
            SELECT doc FROM deletion_requests
            WHERE owner_id = ?
            ORDER BY requested_at DESC
        """, [owner_identity]).fetchall()

        return [ConversationDeletionRequest.from_document(json.loads(row[0])) for row in rows]

    async def get_all_pending_deletion_requests(self) -> List[ConversationDeletionRequest]:
        rows = self.conn.execute("""
            SELECT doc FROM deletion_requests
            WHERE status = ?
            ORDER BY scheduled_deletion_at ASC
        """, [DeletionRequestStatus.PENDING.value]).fetchall()

        return [ConversationDeletionRequest.from_document(json.loads(row[0])) for row in rows]

    # Submission queue

    async def save_queue_item(self, item: SubmissionQueueItem) -> SubmissionQueueItem:
        self.conn.execute("""
            INSERT INTO submission_queue
                (id, owner_id, status, created_at, next_retry_at, lease_expires_at, expires_at, version, doc)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            item.id,
            item.owner_identity,
            item.status.value,
            to_epoch(item.created_at),
            to_epoch(item.next_retry_at),
            to_epoch(item.lease_expires_at),
            to_epoch(item.expires_at),
            item.version,
            self._dump(item)
        ])
        return item

    async def get_queue_item(self, item_id: str, owner_identity: str) -> Optional[SubmissionQueueItem]:
        row = self.conn.execute("""
            SELECT doc FROM submission_queue
            WHERE id = ? AND owner_id = ?
        """, [item_id, owner_identity]).fetchone()

        if row:
            return SubmissionQueueItem.from_document(json.loads(row[0]))
        return None

    async def replace_queue_item(self, item: SubmissionQueueItem, expected_version: int) -> bool:
        result = self.conn.execute("""
            UPDATE submission_queue
            SET status = ?, next_retry_at = ?, lease_expires_at = ?, expires_at = ?, version = ?, doc = ?
            WHERE id = ? AND owner_id = ? AND version = ?
        """, [
            item.status.value,
            to_epoch(item.next_retry_at),
            to_epoch(item.lease_expires_at),
            to_epoch(item.expires_at),
            item.version,
            self._dump(item),
            item.id,
            item.owner_identity,
            expected_version
        ])
        return self._affected(result) == 1

    async def get_ready_queue_items(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        rows = self.conn.execute("""
            SELECT doc FROM submission_queue
            WHERE status = ? AND next_retry_at <= ?
            ORDER BY next_retry_at ASC
            LIMIT ?
        """, [QueueItemStatus.PENDING.value, to_epoch(now), limit]).fetchall()

        return [SubmissionQueueItem.from_document(json.loads(row[0])) for row in rows]

    async def get_expired_leases(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        rows = self.conn.execute("""
            SELECT doc FROM submission_queue
            WHERE status = ? AND lease_expires_at <= ?
            ORDER BY lease_expires_at ASC
            LIMIT ?
        """, [QueueItemStatus.PROCESSING.value, to_epoch(now), limit]).fetchall()

        return [SubmissionQueueItem.from_document(json.loads(row[0])) for row in rows]

    async def get_queue_items_by_identity(self, owner_identity: str) -> List[SubmissionQueueItem]:
        rows = self.conn.execute("""
            SELECT doc FROM submission_queue
            WHERE owner_id = ?
            ORDER BY created_at DESC
        """, [owner_identity]).fetchall()

        return [SubmissionQueueItem.from_document(json.loads(row[0])) for row in rows]

    async def count_queue_items_by_status(self) -> Dict[str, int]:
        rows = self.conn.execute("""
            SELECT status, COUNT(*) FROM submission_queue
            GROUP BY status
        """).fetchall()

        return {row[0]: int(row[1]) for row in rows}

    async def delete_queue_item(self, item_id: str, owner_identity: str) -> bool:
        result = self.conn.execute("""
            DELETE FROM submission_queue
            WHERE id = ? AND owner_id = ?
        """, [item_id, owner_identity])
        return self._affected(result) > 0

    async def purge_expired_queue_items(self, now: datetime) -> int:
        result = self.conn.execute("""
            DELETE FROM submission_queue
            WHERE status IN (?, ?) AND expires_at <= ?
        """, [
            TERMINAL_QUEUE_STATUSES[0].value,
            TERMINAL_QUEUE_STATUSES[1].value,
            to_epoch(now)
        ])
        return self._affected(result)

    async def close(self) -> None:
        self.db.close()
