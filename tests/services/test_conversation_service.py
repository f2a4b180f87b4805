"""Tests for ConversationService."""

from datetime import timedelta

import pytest

from hrsync.errors import ThreadNotFoundError
from hrsync.models import ConversationMessage, MessageRole, SubmissionAction
from hrsync.services.conversation_service import (
    APPLIED_SUBMISSIONS_KEY,
    PENDING_NOTICES_KEY,
    ConversationService,
)


IDENTITY = "alice@example.com"


@pytest.fixture
def service(store, clock):
    """Provide a ConversationService over every store backend."""
    return ConversationService(store, clock=clock)


class TestConversationService:
    """Tests for ConversationService."""

    class TestGetOrCreateThread:
        """SUT: ConversationService.get_or_create_thread"""

        async def test_creates_new(self, service):
            """A new thread should be stored for the session."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            stored = await service.get_thread(thread.id, IDENTITY)
            assert stored.session_id == "s1"
            assert stored.state.is_clocked_in is False

        async def test_loads_existing(self, service):
            """An existing thread_id should be reused."""
            first = await service.get_or_create_thread(IDENTITY, "s1")
            again = await service.get_or_create_thread(IDENTITY, "s1", thread_id=first.id)
            assert again.id == first.id

        async def test_unknown_id_starts_new(self, service):
            """An unknown thread_id should start a fresh thread."""
            thread = await service.get_or_create_thread(IDENTITY, "s1", thread_id="gone")
            assert thread.id != "gone"

        async def test_inherits_clock_state(self, service, clock):
            """A new thread should carry over the latest thread's clock state."""
            first = await service.get_or_create_thread(IDENTITY, "s1")
            service.apply_action(first, SubmissionAction.CLOCK_IN, clock.now)
            await service.save(first)

            clock.advance(minutes=5)
            second = await service.get_or_create_thread(IDENTITY, "s2")
            assert second.id != first.id
            assert second.state.is_clocked_in is True
            assert second.state.last_clock_in == first.state.last_clock_in

    class TestAppendMessage:
        """SUT: ConversationService.append_message"""

        async def test_touches_thread(self, service, clock):
            """Appending should persist the message and bump updated_at."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            clock.advance(seconds=30)
            await service.append_message(thread, ConversationMessage(role=MessageRole.USER, content="hi"))

            stored = await service.get_thread(thread.id, IDENTITY)
            assert [m.content for m in stored.messages] == ["hi"]
            assert stored.updated_at == clock.now

        async def test_updated_at_never_moves_back(self, service, clock):
            """Saving with an earlier clock should keep updated_at."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            before = thread.updated_at
            clock.now = clock.now - timedelta(minutes=1)
            await service.save(thread)

            stored = await service.get_thread(thread.id, IDENTITY)
            assert stored.updated_at == before

    class TestSave:
        """SUT: ConversationService.save"""

        async def test_reapplies_over_concurrent_write(self, service, clock):
            """A save from a stale copy should keep what another writer stored meanwhile."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            stale = await service.get_thread(thread.id, IDENTITY)

            await service.apply_confirmed_action(IDENTITY, thread.id, SubmissionAction.CLOCK_IN, clock.now, "q1")
            clock.advance(seconds=5)
            saved = await service.append_message(stale, ConversationMessage(role=MessageRole.USER, content="hi"))

            assert saved.state.is_clocked_in is True
            assert [m.content for m in saved.messages] == ["hi"]
            stored = await service.get_thread(thread.id, IDENTITY)
            assert stored.state.is_clocked_in is True
            assert stored.state.context_memory[APPLIED_SUBMISSIONS_KEY] == ["q1"]
            assert [m.content for m in stored.messages] == ["hi"]
            assert stored.version == saved.version == 2

        async def test_deleted_meanwhile(self, service):
            """A thread deleted since it was read should raise ThreadNotFoundError."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            await service.store.delete_thread(thread.id, IDENTITY)

            with pytest.raises(ThreadNotFoundError):
                await service.save(thread)

    class TestApplyConfirmedAction:
        """SUT: ConversationService.apply_confirmed_action"""

        async def test_applies_once(self, service, clock):
            """The same confirmation should only be applied once."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            clock_in = clock.now
            await service.apply_confirmed_action(IDENTITY, thread.id, SubmissionAction.CLOCK_IN, clock_in, "q1")

            clock.advance(hours=8)
            await service.apply_confirmed_action(IDENTITY, thread.id, SubmissionAction.CLOCK_OUT, clock.now, "q2")
            replayed = await service.apply_confirmed_action(
                IDENTITY, thread.id, SubmissionAction.CLOCK_IN, clock_in, "q1"
            )

            assert replayed.state.is_clocked_in is False
            assert replayed.state.context_memory[APPLIED_SUBMISSIONS_KEY] == ["q1", "q2"]

        async def test_missing_thread(self, service, clock):
            """A confirmation for a deleted thread should return None."""
            result = await service.apply_confirmed_action(
                IDENTITY, "gone", SubmissionAction.CLOCK_IN, clock.now, "q1"
            )
            assert result is None

    class TestPendingNotices:
        """SUT: ConversationService.add_pending_notice"""

        async def test_add_then_take(self, service):
            """Notices should be stored and then taken exactly once."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            assert await service.add_pending_notice(IDENTITY, thread.id, {"code": "SUBMISSION_FAILED"}) is True

            stored = await service.get_thread(thread.id, IDENTITY)
            assert service.take_pending_notices(stored) == [{"code": "SUBMISSION_FAILED"}]
            assert PENDING_NOTICES_KEY not in stored.state.context_memory
            assert service.take_pending_notices(stored) == []

        async def test_discard_keeps_later_notices(self, service):
            """Discarding delivered notices should keep ones stored after they were taken."""
            thread = await service.get_or_create_thread(IDENTITY, "s1")
            await service.add_pending_notice(IDENTITY, thread.id, {"code": "FIRST"})
            stored = await service.get_thread(thread.id, IDENTITY)
            delivered = service.take_pending_notices(stored)

            await service.add_pending_notice(IDENTITY, thread.id, {"code": "SECOND"})
            latest = await service.get_thread(thread.id, IDENTITY)
            service.discard_notices(latest, delivered)

            assert latest.state.context_memory[PENDING_NOTICES_KEY] == [{"code": "SECOND"}]

        async def test_missing_thread(self, service):
            """add_pending_notice() should return False for an unknown thread."""
            assert await service.add_pending_notice(IDENTITY, "gone", {"code": "X"}) is False
