"""MongoDB conversation store."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .base import ConversationStore
from ...errors import ThreadConflictError, ThreadNotFoundError
from ...models.conversation import ConversationThread
from ...models.deletion import ConversationDeletionRequest, DeletionRequestStatus
from ...models.queue import SubmissionQueueItem, QueueItemStatus, TERMINAL_QUEUE_STATUSES


THREADS_COLLECTION = "conversations"
DELETION_REQUESTS_COLLECTION = "conversationDeletionRequests"
QUEUE_COLLECTION = "submissionQueue"


def _bson_safe(value: Any) -> Any:
    """Turn enums into their values so BSON can encode them."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _bson_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_bson_safe(v) for v in value]
    return value


def _to_mongo(document) -> Dict[str, Any]:
    """Serialize a document keeping datetimes as BSON dates."""
    data = _bson_safe(document.model_dump(mode="python", by_alias=True))
    data["_id"] = data.pop("id")
    return data


def _from_mongo(model, data: Dict[str, Any]):
    data = dict(data)
    data["id"] = data.pop("_id")
    return model.from_document(data)


class MongoConversationStore(ConversationStore):
    """
    Conversation store backed by MongoDB through motor.

    Documents use ``_id`` plus ``ownerIdentity`` as their key. Conditional
    writes filter on ``version`` or ``status`` so only one writer wins.
    """

    backend_name = "mongodb"

    def __init__(self, client: AsyncIOMotorClient, database: str):
        super().__init__()
        self.client = client
        self.db = client[database]
        self.threads = self.db[THREADS_COLLECTION]
        self.deletion_requests = self.db[DELETION_REQUESTS_COLLECTION]
        self.queue = self.db[QUEUE_COLLECTION]

    @classmethod
    def from_url(cls, url: str, database: str) -> "MongoConversationStore":
        return cls(AsyncIOMotorClient(url, tz_aware=True), database)

    async def ensure_indexes(self) -> None:
        """Create the indexes queries rely on, including the queue TTL index."""
        await self.threads.create_index([("ownerIdentity", ASCENDING), ("updatedAt", DESCENDING)])
        await self.deletion_requests.create_index([("ownerIdentity", ASCENDING), ("requestedAt", DESCENDING)])
        await self.deletion_requests.create_index([("status", ASCENDING), ("scheduledDeletionAt", ASCENDING)])
        await self.queue.create_index([("status", ASCENDING), ("nextRetryAt", ASCENDING)])
        await self.queue.create_index([("status", ASCENDING), ("leaseExpiresAt", ASCENDING)])
        await self.queue.create_index([("ownerIdentity", ASCENDING), ("createdAt", DESCENDING)])
        await self.queue.create_index("expiresAt", expireAfterSeconds=0)
        self.logger.info("MongoDB indexes ensured")

    # Threads

    async def get_thread(self, thread_id: str, owner_identity: str) -> Optional[ConversationThread]:
        doc = await self.threads.find_one({"_id": thread_id, "ownerIdentity": owner_identity})
        return _from_mongo(ConversationThread, doc) if doc else None

    async def create_thread(self, thread: ConversationThread) -> ConversationThread:
        await self.threads.insert_one(_to_mongo(thread))
        return thread

    async def update_thread(self, thread: ConversationThread) -> ConversationThread:
        expected_version = thread.version
        thread.version = expected_version + 1
        result = await self.threads.replace_one(
            {"_id": thread.id, "ownerIdentity": thread.owner_identity, "version": expected_version},
            _to_mongo(thread),
            upsert=False,
        )
        if result.matched_count == 1:
            return thread

        thread.version = expected_version
        exists = await self.threads.find_one(
            {"_id": thread.id, "ownerIdentity": thread.owner_identity}, projection={"_id": 1}
        )
        if exists is None:
            raise ThreadNotFoundError(thread.id, thread.owner_identity)
        raise ThreadConflictError(thread.id, thread.owner_identity)

    async def get_recent_threads(self, owner_identity: str, limit: int = 10) -> List[ConversationThread]:
        cursor = self.threads.find({"ownerIdentity": owner_identity}).sort("updatedAt", DESCENDING).limit(limit)
        return [_from_mongo(ConversationThread, doc) async for doc in cursor]

    async def delete_thread(self, thread_id: str, owner_identity: str) -> bool:
        result = await self.threads.delete_one({"_id": thread_id, "ownerIdentity": owner_identity})
        return result.deleted_count > 0

    async def delete_all_conversations(self, owner_identity: str) -> int:
        result = await self.threads.delete_many({"ownerIdentity": owner_identity})
        self.logger.info(f"Deleted {result.deleted_count} conversation threads for {owner_identity}")
        return result.deleted_count

    # Deletion requests

    async def save_deletion_request(self, request: ConversationDeletionRequest) -> ConversationDeletionRequest:
        await self.deletion_requests.insert_one(_to_mongo(request))
        return request

    async def update_deletion_request(
        self,
        request: ConversationDeletionRequest,
        expected_status: DeletionRequestStatus,
    ) -> bool:
        result = await self.deletion_requests.replace_one(
            {"_id": request.id, "ownerIdentity": request.owner_identity, "status": expected_status.value},
            _to_mongo(request),
        )
        return result.matched_count == 1

    async def get_deletion_request(self, request_id: str, owner_identity: str) -> Optional[ConversationDeletionRequest]:
        doc = await self.deletion_requests.find_one({"_id": request_id, "ownerIdentity": owner_identity})
        return _from_mongo(ConversationDeletionRequest, doc) if doc else None

    async def get_deletion_requests_by_identity(self, owner_identity: str) -> List[ConversationDeletionRequest]:
        cursor = self.deletion_requests.find({"ownerIdentity": owner_identity}).sort("requestedAt", DESCENDING)
        return [_from_mongo(ConversationDeletionRequest, doc) async for doc in cursor]

    async def get_all_pending_deletion_requests(self) -> List[ConversationDeletionRequest]:
        cursor = self.deletion_requests.find(
            {"status": DeletionRequestStatus.PENDING.value}
        ).sort("scheduledDeletionAt", ASCENDING)
        return [_from_mongo(ConversationDeletionRequest, doc) async for doc in cursor]

    # Submission queue

    async def save_queue_item(self, item: SubmissionQueueItem) -> SubmissionQueueItem:
        await self.queue.insert_one(_to_mongo(item))
        return item

    async def get_queue_item(self, item_id: str, owner_identity: str) -> Optional[SubmissionQueueItem]:
        doc = await self.queue.find_one({"_id": item_id, "ownerIdentity": owner_identity})
        return _from_mongo(SubmissionQueueItem, doc) if doc else None

    async def replace_queue_item(self, item: SubmissionQueueItem, expected_version: int) -> bool:
        doc = await self.queue.find_one_and_replace(
            {"_id": item.id, "ownerIdentity": item.owner_identity, "version": expected_version},
            _to_mongo(item),
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    async def get_ready_queue_items(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        cursor = self.queue.find({
            "status": QueueItemStatus.PENDING.value,
            "nextRetryAt": {"$lte": now},
        }).sort("nextRetryAt", ASCENDING).limit(limit)
        return [_from_mongo(SubmissionQueueItem, doc) async for doc in cursor]

    async def get_expired_leases(self, now: datetime, limit: int) -> List[SubmissionQueueItem]:
        cursor = self.queue.find({
            "status": QueueItemStatus.PROCESSING.value,
            "leaseExpiresAt": {"$lte": now},
        }).sort("leaseExpiresAt", ASCENDING).limit(limit)
        return [_from_mongo(SubmissionQueueItem, doc) async for doc in cursor]

    async def get_queue_items_by_identity(self, owner_identity: str) -> List[SubmissionQueueItem]:
        cursor = self.queue.find({"ownerIdentity": owner_identity}).sort("createdAt", DESCENDING)
        return [_from_mongo(SubmissionQueueItem, doc) async for doc in cursor]

    async def count_queue_items_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        async for row in self.queue.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
            counts[row["_id"]] = row["count"]
        return counts

    async def delete_queue_item(self, item_id: str, owner_identity: str) -> bool:
        result = await self.queue.delete_one({"_id": item_id, "ownerIdentity": owner_identity})
        return result.deleted_count > 0

    async def purge_expired_queue_items(self, now: datetime) -> int:
        result = await self.queue.delete_many({
            "status": {"$in": [s.value for s in TERMINAL_QUEUE_STATUSES]},
            "expiresAt": {"$lte": now},
        })
        return result.deleted_count

    async def close(self) -> None:
        self.client.close()
