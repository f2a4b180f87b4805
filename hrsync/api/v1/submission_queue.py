"""Submission queue REST API routes - V1."""

from fastapi import APIRouter, Depends, HTTPException

from .dependencies import get_identity
from ...models.queue import (
    QueueItemResponse,
    QueueListResponse,
    QueueStatisticsResponse,
    SubmissionQueueItem,
)
from ...services import SubmissionQueue

router = APIRouter(prefix="/api/v1/submission-queue", tags=["Submission Queue"])

# Submission queue (set by main.py)
queue: SubmissionQueue = None


def get_queue() -> SubmissionQueue:
    """Dependency to get the submission queue."""
    if queue is None:
        raise HTTPException(status_code=500, detail="Submission queue not initialized")
    return queue


def _to_response(item: SubmissionQueueItem) -> QueueItemResponse:
    return QueueItemResponse(
        id=item.id,
        action=item.action,
        status=item.status,
        retry_count=item.retry_count,
        max_retries=item.max_retries,
        last_error=item.last_error,
        last_status_code=item.last_status_code,
        next_retry_at=item.next_retry_at,
        created_at=item.created_at,
    )


@router.get("", response_model=QueueListResponse)
async def list_queue_items(
    identity: str = Depends(get_identity),
    submission_queue: SubmissionQueue = Depends(get_queue),
):
    """List the caller's queued submissions."""
    items = await submission_queue.get_identity_queue(identity)
    return QueueListResponse(items=[_to_response(i) for i in items], total=len(items))


@router.get("/statistics", response_model=QueueStatisticsResponse)
async def get_queue_statistics(
    identity: str = Depends(get_identity),
    submission_queue: SubmissionQueue = Depends(get_queue),
):
    """Count queue items by status across all identities."""
    return await submission_queue.get_statistics()


@router.get("/items/{item_id}", response_model=QueueItemResponse)
async def get_queue_item(
    item_id: str,
    identity: str = Depends(get_identity),
    submission_queue: SubmissionQueue = Depends(get_queue),
):
    """Get one queued submission: status, retry count and last error."""
    item = await submission_queue.get_item(item_id, identity)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Queue item not found: {item_id}")
    return _to_response(item)
