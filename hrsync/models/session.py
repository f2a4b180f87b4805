"""Active session models."""

from datetime import datetime
from typing import List
from pydantic import Field

from .base import Document


class ActiveSession(Document):
    """A client session with recent activity."""

    session_id: str = Field(description="Session ID")
    last_activity: datetime = Field(description="Most recent thread update in this session")
    thread_count: int = Field(description="Recent threads in this session")
    is_current: bool = Field(description="Whether this is the requesting session")
    device_info: str = Field(default="Unknown Device", description="Device description")
    time_since_last_activity: str = Field(default="", description="Human readable idle time")


class SessionCollisionWarning(Document):
    """Advisory notice that another session is active for the same identity."""

    message: str = Field(description="Warning shown to the user")
    current_session: ActiveSession = Field(description="The requesting session")
    other_active_sessions: List[ActiveSession] = Field(description="Other active sessions")
    total_active_sessions: int = Field(description="All active sessions including the current one")


class ActiveSessionsResponse(Document):
    """Response model for listing active sessions."""

    sessions: List[ActiveSession] = Field(description="Active sessions, most recent first")
    total: int = Field(description="Number of active sessions")
