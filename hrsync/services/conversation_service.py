"""Conversation thread operations on top of the conversation store."""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..db.stores import ConversationStore
from ..errors import ThreadConflictError, ThreadNotFoundError
from ..models.conversation import (
    ConversationMessage,
    ConversationThread,
    UserMetadata,
)
from ..models.queue import SubmissionAction
from ..utils.clock import Clock, utcnow
from ..utils.logger import get_app_logger


PENDING_NOTICES_KEY = "pendingNotices"
APPLIED_SUBMISSIONS_KEY = "appliedSubmissions"
MAX_APPLIED_SUBMISSIONS = 50
MAX_SAVE_ATTEMPTS = 5

ThreadMutation = Callable[[ConversationThread], None]


class ConversationService:
    """Creates threads, appends messages and applies confirmed clock changes."""

    def __init__(self, store: ConversationStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock
        self.logger = get_app_logger()

    async def get_thread(self, thread_id: str, owner_identity: str) -> Optional[ConversationThread]:
        return await self.store.get_thread(thread_id, owner_identity)

    async def list_threads(self, owner_identity: str, limit: int = 10) -> List[ConversationThread]:
        return await self.store.get_recent_threads(owner_identity, limit)

    async def get_or_create_thread(
        self,
        owner_identity: str,
        session_id: str,
        thread_id: Optional[str] = None,
        user_metadata: Optional[UserMetadata] = None,
    ) -> ConversationThread:
        """
        Load ``thread_id`` if it exists, otherwise start a new thread.

        A new thread inherits the clock state of the identity's most recent
        thread so state survives across threads.
        """
        if thread_id:
            thread = await self.store.get_thread(thread_id, owner_identity)
            if thread is not None:
                if user_metadata is not None:
                    thread.user_metadata = user_metadata
                return thread
            self.logger.info(f"Thread {thread_id} not found for {owner_identity}, starting a new one")

        now = self.clock()
        thread = ConversationThread(
            owner_identity=owner_identity,
            session_id=session_id,
            user_metadata=user_metadata,
            created_at=now,
            updated_at=now,
        )

        recent = await self.store.get_recent_threads(owner_identity, 1)
        if recent:
            previous = recent[0].state
            thread.state.is_clocked_in = previous.is_clocked_in
            thread.state.last_clock_in = previous.last_clock_in
            thread.state.last_clock_out = previous.last_clock_out

        await self.store.create_thread(thread)
        self.logger.info(f"Created thread {thread.id} for {owner_identity} in session {session_id}")
        return thread

    async def save(self, thread: ConversationThread, mutation: Optional[ThreadMutation] = None) -> ConversationThread:
        """
        Apply ``mutation`` to the thread and persist it, bumping updated_at.

        If another writer saved the thread since it was read, the stored copy
        is read again and ``mutation`` is applied to it instead. Callers must
        continue with the returned thread.

        Raises:
            ThreadNotFoundError: If the thread was deleted meanwhile
            ThreadConflictError: If every attempt lost to another writer
        """
        for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
            if mutation is not None:
                mutation(thread)
            thread.touch(self.clock())
            try:
                return await self.store.update_thread(thread)
            except ThreadConflictError:
                if attempt == MAX_SAVE_ATTEMPTS:
                    raise
                self.logger.info(f"Thread {thread.id} changed since it was read, reapplying (attempt {attempt})")
                fresh = await self.store.get_thread(thread.id, thread.owner_identity)
                if fresh is None:
                    raise ThreadNotFoundError(thread.id, thread.owner_identity)
                thread = fresh

    async def append_message(
        self,
        thread: ConversationThread,
        message: ConversationMessage,
        mutation: Optional[ThreadMutation] = None,
    ) -> ConversationThread:
        """Append a message, together with any other change in ``mutation``."""

        def append(target: ConversationThread) -> None:
            if mutation is not None:
                mutation(target)
            if target.find_message(message.id) is None:
                target.messages.append(message)

        return await self.save(thread, append)

    @staticmethod
    def apply_action(thread: ConversationThread, action: SubmissionAction, timestamp: datetime) -> None:
        """Apply one confirmed clock action to the thread state."""
        state = thread.state
        if action == SubmissionAction.CLOCK_IN:
            state.is_clocked_in = True
            state.last_clock_in = timestamp
        else:
            state.is_clocked_in = False
            state.last_clock_out = timestamp

    async def apply_confirmed_action(
        self,
        owner_identity: str,
        thread_id: str,
        action: SubmissionAction,
        timestamp: datetime,
        confirmation_id: str,
    ) -> Optional[ConversationThread]:
        """
        Apply a clock action the HR system confirmed later, e.g. on retry.

        A confirmation is applied at most once per thread. Returns the updated
        thread, or None if the thread no longer exists.
        """
        thread = await self.store.get_thread(thread_id, owner_identity)
        if thread is None:
            self.logger.info(f"Thread {thread_id} is gone, not applying confirmation {confirmation_id}")
            return None

        if confirmation_id in thread.state.context_memory.get(APPLIED_SUBMISSIONS_KEY, []):
            return thread

        def confirm(target: ConversationThread) -> None:
            applied = target.state.context_memory.setdefault(APPLIED_SUBMISSIONS_KEY, [])
            if confirmation_id in applied:
                return
            self.apply_action(target, action, timestamp)
            applied.append(confirmation_id)
            del applied[:-MAX_APPLIED_SUBMISSIONS]

        try:
            return await self.save(thread, confirm)
        except ThreadNotFoundError:
            self.logger.info(f"Thread {thread_id} was deleted while applying confirmation {confirmation_id}")
            return None

    async def add_pending_notice(self, owner_identity: str, thread_id: str, notice: Dict[str, Any]) -> bool:
        """
        Remember a notice for the next interaction on a thread. Never raises.

        Returns:
            True if the notice was stored
        """
        try:
            thread = await self.store.get_thread(thread_id, owner_identity)
            if thread is None:
                return False
            await self.save(
                thread, lambda target: target.state.context_memory.setdefault(PENDING_NOTICES_KEY, []).append(notice)
            )
            return True
        except Exception as e:
            self.logger.error(f"Failed to store notice on thread {thread_id} for {owner_identity}: {e}")
            return False

    @staticmethod
    def take_pending_notices(thread: ConversationThread) -> List[Dict[str, Any]]:
        """Remove and return the thread's pending notices. The caller saves the thread."""
        return thread.state.context_memory.pop(PENDING_NOTICES_KEY, [])

    @staticmethod
    def discard_notices(thread: ConversationThread, delivered: List[Dict[str, Any]]) -> None:
        """Drop notices already delivered, keeping any stored after they were taken."""
        remaining = [n for n in thread.state.context_memory.get(PENDING_NOTICES_KEY, []) if n not in delivered]
        if remaining:
            thread.state.context_memory[PENDING_NOTICES_KEY] = remaining
        else:
            thread.state.context_memory.pop(PENDING_NOTICES_KEY, None)
