"""Detection of concurrent sessions for one identity."""

from datetime import datetime, timedelta
from typing import List, Optional

from .conversation_service import ConversationService
from ..db.stores import ConversationStore
from ..models.conversation import ConversationThread
from ..models.session import ActiveSession, SessionCollisionWarning
from ..utils.clock import Clock, utcnow
from ..utils.logger import get_app_logger


RECENT_THREAD_LIMIT = 10
DEACTIVATION_THREAD_LIMIT = 20
UNKNOWN_DEVICE = "Unknown Device"


def describe_idle_time(last_activity: datetime, now: datetime) -> str:
    """Human readable time since ``last_activity``."""
    elapsed = now - last_activity
    minutes = elapsed.total_seconds() / 60
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{int(minutes)} minutes ago"
    if minutes < 24 * 60:
        return f"{int(minutes // 60)} hours ago"
    return f"{elapsed.days} days ago"


def _is_deactivated(thread: ConversationThread) -> bool:
    return thread.state.context_memory.get("sessionActive") is False


class SessionManager:
    """
    Groups an identity's recently active threads by session id.

    Purely advisory: a collision is reported to the user but never blocks a
    request, and failures are logged instead of raised.
    """

    def __init__(
        self,
        store: ConversationStore,
        active_window_minutes: int = 30,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.active_window = timedelta(minutes=active_window_minutes)
        self.clock = clock
        self.conversations = ConversationService(store, clock=clock)
        self.logger = get_app_logger()

    async def get_active_sessions(self, owner_identity: str, current_session_id: str) -> List[ActiveSession]:
        """
        Sessions with a thread updated inside the activity window, most
        recent first.
        """
        now = self.clock()
        threshold = now - self.active_window
        recent = await self.store.get_recent_threads(owner_identity, RECENT_THREAD_LIMIT)

        groups = {}
        for thread in recent:
            if thread.updated_at < threshold or not thread.session_id or _is_deactivated(thread):
                continue
            groups.setdefault(thread.session_id, []).append(thread)

        sessions = []
        for session_id, threads in groups.items():
            latest = max(threads, key=lambda t: t.updated_at)
            device = latest.user_metadata.name if latest.user_metadata and latest.user_metadata.name else None
            sessions.append(ActiveSession(
                session_id=session_id,
                last_activity=latest.updated_at,
                thread_count=len(threads),
                is_current=session_id == current_session_id,
                device_info=device or UNKNOWN_DEVICE,
                time_since_last_activity=describe_idle_time(latest.updated_at, now),
            ))

        sessions.sort(key=lambda s: s.last_activity, reverse=True)

        if len(sessions) > 1:
            self.logger.warning(f"Multiple active sessions detected for {owner_identity}: {len(sessions)} sessions")

        return sessions

    async def detect_collision(
        self,
        owner_identity: str,
        current_session_id: str,
    ) -> Optional[SessionCollisionWarning]:
        """
        Warning if another session of the identity is active, else None.
        Never raises.
        """
        try:
            sessions = await self.get_active_sessions(owner_identity, current_session_id)
        except Exception as e:
            self.logger.error(f"Failed to check active sessions for {owner_identity}: {e}")
            return None

        others = [s for s in sessions if not s.is_current]
        if not others:
            return None

        current = next((s for s in sessions if s.is_current), None)
        if current is None:
            now = self.clock()
            current = ActiveSession(
                session_id=current_session_id,
                last_activity=now,
                thread_count=0,
                is_current=True,
                time_since_last_activity=describe_idle_time(now, now),
            )

        if len(others) == 1:
            message = (
                "You have another active session open. "
                "Changes made in one session may not reflect immediately in the other."
            )
        else:
            message = (
                f"You have {len(others)} other active sessions open. "
                "Changes made in one session may not reflect immediately in others."
            )

        self.logger.info(
            f"Session collision for {owner_identity}: current={current_session_id}, others={len(others)}"
        )
        return SessionCollisionWarning(
            message=message,
            current_session=current,
            other_active_sessions=others,
            total_active_sessions=len(others) + 1,
        )

    async def register_activity(self, thread_id: str, owner_identity: str) -> None:
        """Bump a thread's updated_at. Never raises."""
        try:
            thread = await self.store.get_thread(thread_id, owner_identity)
            if thread is None:
                return
            thread = await self.conversations.save(
                thread, lambda target: target.state.context_memory.pop("sessionActive", None)
            )
            self.logger.debug(f"Registered activity for thread {thread_id}, session {thread.session_id}")
        except Exception as e:
            self.logger.error(f"Failed to register session activity for thread {thread_id}: {e}")

    async def deactivate_session(self, session_id: str, owner_identity: str) -> int:
        """
        Mark a session's recent threads inactive. Never raises.

        Returns:
            Number of threads marked
        """
        try:
            recent = await self.store.get_recent_threads(owner_identity, DEACTIVATION_THREAD_LIMIT)
            threads = [t for t in recent if t.session_id == session_id]
            now = self.clock()

            def deactivate(target: ConversationThread) -> None:
                target.state.context_memory["sessionActive"] = False
                target.state.context_memory["deactivatedAt"] = now.isoformat()

            for thread in threads:
                await self.conversations.save(thread, deactivate)
            self.logger.info(f"Deactivated session {session_id} for {owner_identity} ({len(threads)} threads)")
            return len(threads)
        except Exception as e:
            self.logger.error(f"Failed to deactivate session {session_id} for {owner_identity}: {e}")
            return 0
