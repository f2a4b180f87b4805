"""Conversation REST API routes - V1."""

from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from .dependencies import get_client_ip, get_identity
from ...models.conversation import (
    ConversationThread,
    SendMessageRequest,
    ThreadListResponse,
    ThreadSummaryResponse,
)
from ...models.session import ActiveSessionsResponse
from ...services import ConversationAgent, ConversationService, SessionManager
from ...streaming import EventStream, NotificationHub, StateSnapshotEvent, format_sse

router = APIRouter(prefix="/api/v1/conversations", tags=["Conversations"])

# Services (set by main.py)
agent: ConversationAgent = None
conversation_service: ConversationService = None
session_manager: SessionManager = None
hub: NotificationHub = None

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def get_agent() -> ConversationAgent:
    """Dependency to get the conversation agent."""
    if agent is None:
        raise HTTPException(status_code=500, detail="Conversation agent not initialized")
    return agent


def get_conversation_service() -> ConversationService:
    """Dependency to get the conversation service."""
    if conversation_service is None:
        raise HTTPException(status_code=500, detail="Conversation service not initialized")
    return conversation_service


def get_session_manager() -> SessionManager:
    """Dependency to get the session manager."""
    if session_manager is None:
        raise HTTPException(status_code=500, detail="Session manager not initialized")
    return session_manager


def get_hub() -> NotificationHub:
    """Dependency to get the notification hub."""
    if hub is None:
        raise HTTPException(status_code=500, detail="Notification hub not initialized")
    return hub


def _to_summary(thread: ConversationThread) -> ThreadSummaryResponse:
    return ThreadSummaryResponse(
        id=thread.id,
        session_id=thread.session_id,
        message_count=len(thread.messages),
        is_clocked_in=thread.state.is_clocked_in,
        created_at=thread.created_at,
        updated_at=thread.updated_at,
    )


@router.post("/messages")
async def send_message(
    request: SendMessageRequest,
    identity: str = Depends(get_identity),
    client_ip: Optional[str] = Depends(get_client_ip),
    conversation_agent: ConversationAgent = Depends(get_agent),
):
    """
    Send a message and stream the reply as server-sent events.

    The message is handled in a background task. Closing the connection
    stops the stream but not the clock action behind it.
    """
    stream = EventStream(name=f"message:{identity}")
    conversation_agent.start(identity, request, stream, source_ip=client_ip)
    return StreamingResponse(stream.sse(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/events")
async def subscribe_events(
    identity: str = Depends(get_identity),
    notifications: NotificationHub = Depends(get_hub),
    service: ConversationService = Depends(get_conversation_service),
):
    """
    Live stream of state changes and queued-action outcomes.

    Starts with a snapshot of the latest thread state so later deltas and
    snapshots have a baseline.
    """
    stream = notifications.subscribe(identity)
    threads = await service.list_threads(identity, limit=1)
    if threads:
        stream.emit_nowait(StateSnapshotEvent(state=threads[0].state.to_snapshot()))

    async def frames() -> AsyncIterator[str]:
        try:
            async for event in stream.events():
                yield format_sse(event)
        finally:
            notifications.unsubscribe(identity, stream)
            if not stream.is_closed:
                stream.detach()

    return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("", response_model=ThreadListResponse)
async def list_conversations(
    limit: int = Query(10, ge=1, le=100),
    identity: str = Depends(get_identity),
    service: ConversationService = Depends(get_conversation_service),
):
    """List the caller's most recent threads."""
    threads = await service.list_threads(identity, limit=limit)
    return ThreadListResponse(threads=[_to_summary(t) for t in threads], total=len(threads))


@router.get("/sessions/active", response_model=ActiveSessionsResponse)
async def list_active_sessions(
    session_id: str = Query(..., min_length=1, description="The requesting session"),
    identity: str = Depends(get_identity),
    sessions: SessionManager = Depends(get_session_manager),
):
    """List sessions with activity inside the active window."""
    active = await sessions.get_active_sessions(identity, session_id)
    return ActiveSessionsResponse(sessions=active, total=len(active))


@router.post("/sessions/{session_id}/deactivate", response_model=dict)
async def deactivate_session(
    session_id: str,
    identity: str = Depends(get_identity),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Mark a session's threads inactive, e.g. on logout."""
    count = await sessions.deactivate_session(session_id, identity)
    return {
        "status": "success",
        "message": f"Session {session_id} deactivated",
        "threadsUpdated": count,
    }


@router.get("/{thread_id}", response_model=ConversationThread)
async def get_conversation(
    thread_id: str,
    identity: str = Depends(get_identity),
    service: ConversationService = Depends(get_conversation_service),
):
    """Get a thread with its messages and state."""
    thread = await service.get_thread(thread_id, identity)
    if thread is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {thread_id}")
    return thread
