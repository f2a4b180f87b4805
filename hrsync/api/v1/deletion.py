"""Conversation deletion request REST API routes - V1."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response

from .dependencies import get_client_ip, get_identity
from ...errors import (
    DeletionRequestConflictError,
    DeletionRequestNotFoundError,
    InvalidDeletionTransitionError,
)
from ...models.deletion import (
    CancelDeletionRequest,
    ConversationDeletionRequest,
    CreateDeletionRequest,
    DeletionRequestResponse,
)
from ...services import DeletionLifecycle, Notifier

router = APIRouter(prefix="/api/v1/conversations/deletion-request", tags=["Conversation Deletion"])

# Deletion services (set by main.py)
lifecycle: DeletionLifecycle = None
notifier: Notifier = None


def get_lifecycle() -> DeletionLifecycle:
    """Dependency to get the deletion lifecycle."""
    if lifecycle is None:
        raise HTTPException(status_code=500, detail="Deletion lifecycle not initialized")
    return lifecycle


def get_notifier() -> Notifier:
    """Dependency to get the deletion notifier."""
    if notifier is None:
        raise HTTPException(status_code=500, detail="Deletion notifier not initialized")
    return notifier


def _to_response(request: ConversationDeletionRequest, service: DeletionLifecycle) -> DeletionRequestResponse:
    return DeletionRequestResponse(
        id=request.id,
        status=request.status,
        requested_at=request.requested_at,
        scheduled_deletion_at=request.scheduled_deletion_at,
        days_until_deletion=request.days_until_deletion(service.clock()),
        can_be_cancelled=request.can_be_cancelled(),
        completed_at=request.completed_at,
        conversations_deleted=request.conversations_deleted,
        cancellation_reason=request.cancellation_reason,
        error_message=request.error_message,
    )


@router.post("", response_model=DeletionRequestResponse, status_code=201)
async def create_deletion_request(
    request: Optional[CreateDeletionRequest] = Body(None),
    identity: str = Depends(get_identity),
    client_ip: Optional[str] = Depends(get_client_ip),
    service: DeletionLifecycle = Depends(get_lifecycle),
    deletion_notifier: Notifier = Depends(get_notifier),
):
    """Schedule deletion of all of the caller's conversations."""
    request = request or CreateDeletionRequest()
    try:
        deletion_request = await service.submit_request(
            identity,
            email=request.email,
            display_name=request.display_name,
            origin_ip=client_ip,
        )
    except DeletionRequestConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "existingRequestId": e.existing_request_id},
        )

    await deletion_notifier.send_request_confirmation(deletion_request)
    return _to_response(deletion_request, service)


@router.get("", response_model=DeletionRequestResponse)
async def get_pending_deletion_request(
    identity: str = Depends(get_identity),
    service: DeletionLifecycle = Depends(get_lifecycle),
):
    """Get the caller's pending deletion request. 204 when there is none."""
    deletion_request = await service.get_pending_request(identity)
    if deletion_request is None:
        return Response(status_code=204)
    return _to_response(deletion_request, service)


@router.get("/{request_id}", response_model=DeletionRequestResponse)
async def get_deletion_request(
    request_id: str,
    identity: str = Depends(get_identity),
    service: DeletionLifecycle = Depends(get_lifecycle),
):
    """Get a deletion request by ID."""
    deletion_request = await service.get_request(request_id, identity)
    if deletion_request is None:
        raise HTTPException(status_code=404, detail=f"Deletion request not found: {request_id}")
    return _to_response(deletion_request, service)


@router.delete("/{request_id}", response_model=DeletionRequestResponse)
async def cancel_deletion_request(
    request_id: str,
    request: Optional[CancelDeletionRequest] = Body(None),
    identity: str = Depends(get_identity),
    service: DeletionLifecycle = Depends(get_lifecycle),
    deletion_notifier: Notifier = Depends(get_notifier),
):
    """Cancel a pending deletion request."""
    try:
        deletion_request = await service.cancel_request(
            request_id,
            identity,
            reason=request.reason if request else None,
        )
    except DeletionRequestNotFoundError:
        raise HTTPException(status_code=404, detail=f"Deletion request not found: {request_id}")
    except InvalidDeletionTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await deletion_notifier.send_cancellation_notice(deletion_request)
    return _to_response(deletion_request, service)
