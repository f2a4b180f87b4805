"""Tests for DeletionLifecycle and DeletionProcessor."""

import asyncio

import pytest

from hrsync.errors import (
    DeletionRequestConflictError,
    DeletionRequestNotFoundError,
    InvalidDeletionTransitionError,
)
from hrsync.models import ConversationThread, DeletionAuditAction, DeletionRequestStatus
from hrsync.services.deletion import DeletionLifecycle, DeletionProcessor, Notifier


IDENTITY = "alice@example.com"


class RecordingNotifier(Notifier):
    """Notifier that remembers what it was asked to send."""

    def __init__(self):
        self.sent = []

    async def send_request_confirmation(self, request):
        self.sent.append(("requested", request.id))

    async def send_cancellation_notice(self, request):
        self.sent.append(("cancelled", request.id))

    async def send_completion_confirmation(self, request):
        self.sent.append(("completed", request.id))


class FlakyDeleteStore:
    """Wraps a store and fails bulk deletion for chosen identities."""

    def __init__(self, store, failing):
        self._store = store
        self.failing = set(failing)

    def __getattr__(self, name):
        return getattr(self._store, name)

    async def delete_all_conversations(self, owner_identity):
        if owner_identity in self.failing:
            raise RuntimeError("storage unavailable")
        return await self._store.delete_all_conversations(owner_identity)


class YieldingReadStore:
    """Wraps a store so reading a deletion request suspends like a network call."""

    def __init__(self, store):
        self._store = store

    def __getattr__(self, name):
        return getattr(self._store, name)

    async def get_deletion_request(self, request_id, owner_identity):
        await asyncio.sleep(0)
        return await self._store.get_deletion_request(request_id, owner_identity)


@pytest.fixture
def lifecycle(store, audit, clock):
    """Provide a DeletionLifecycle over every store backend."""
    return DeletionLifecycle(store, audit, window_days=30, clock=clock)


async def _add_threads(store, owner_identity, count, clock):
    for i in range(count):
        await store.create_thread(ConversationThread(
            id=f"{owner_identity}-t{i}",
            owner_identity=owner_identity,
            session_id="s1",
            created_at=clock.now,
            updated_at=clock.now,
        ))


class TestDeletionLifecycle:
    """Tests for DeletionLifecycle."""

    class TestSubmitRequest:
        """SUT: DeletionLifecycle.submit_request"""

        async def test_scheduled_thirty_days_out(self, lifecycle, clock):
            """A new request should be pending and due in 30 days."""
            request = await lifecycle.submit_request(IDENTITY, email="alice@example.com", origin_ip="10.0.0.1")

            assert request.status == DeletionRequestStatus.PENDING
            assert request.requested_at == clock.now
            assert (request.scheduled_deletion_at - request.requested_at).days == 30
            assert request.days_until_deletion(clock.now) == 30
            assert request.request_origin_ip == "10.0.0.1"

        async def test_second_pending_conflicts(self, lifecycle):
            """A second request while one is pending should conflict."""
            first = await lifecycle.submit_request(IDENTITY)
            with pytest.raises(DeletionRequestConflictError) as exc_info:
                await lifecycle.submit_request(IDENTITY)
            assert exc_info.value.existing_request_id == first.id

        async def test_new_request_after_cancel(self, lifecycle):
            """A cancelled request should not block a new one."""
            first = await lifecycle.submit_request(IDENTITY)
            await lifecycle.cancel_request(first.id, IDENTITY)
            second = await lifecycle.submit_request(IDENTITY)
            assert second.id != first.id

        async def test_audited(self, lifecycle, audit, clock):
            """Submission should be written to the deletion audit trail."""
            request = await lifecycle.submit_request(IDENTITY, origin_ip="10.0.0.1")
            entries = await audit.deletions.read(IDENTITY, clock.now.date())
            assert [e.action for e in entries] == [DeletionAuditAction.SUBMITTED]
            assert entries[0].request_id == request.id
            assert entries[0].ip_address == "10.0.0.1"

    class TestCancelRequest:
        """SUT: DeletionLifecycle.cancel_request"""

        async def test_cancel_pending(self, lifecycle, clock):
            """cancel_request() should cancel with the default reason."""
            request = await lifecycle.submit_request(IDENTITY)
            cancelled = await lifecycle.cancel_request(request.id, IDENTITY)

            assert cancelled.status == DeletionRequestStatus.CANCELLED
            assert cancelled.cancellation_reason == "Cancelled by user"
            assert cancelled.completed_at == clock.now
            assert cancelled.can_be_cancelled() is False

        async def test_cancel_with_reason(self, lifecycle):
            """cancel_request() should keep the given reason."""
            request = await lifecycle.submit_request(IDENTITY)
            cancelled = await lifecycle.cancel_request(request.id, IDENTITY, reason="changed my mind")
            assert cancelled.cancellation_reason == "changed my mind"

        async def test_cancel_terminal_rejected(self, lifecycle):
            """A cancelled request should not be cancelled again."""
            request = await lifecycle.submit_request(IDENTITY)
            await lifecycle.cancel_request(request.id, IDENTITY)
            with pytest.raises(InvalidDeletionTransitionError):
                await lifecycle.cancel_request(request.id, IDENTITY)

        async def test_cancel_unknown(self, lifecycle):
            """cancel_request() should raise for an unknown request."""
            with pytest.raises(DeletionRequestNotFoundError):
                await lifecycle.cancel_request("missing", IDENTITY)

        async def test_cancel_other_identity(self, lifecycle):
            """A request should not be reachable through another identity."""
            request = await lifecycle.submit_request(IDENTITY)
            with pytest.raises(DeletionRequestNotFoundError):
                await lifecycle.cancel_request(request.id, "mallory@example.com")

    class TestProcessRequest:
        """SUT: DeletionLifecycle.process_request"""

        async def test_not_ready_before_window(self, lifecycle, clock):
            """A request inside its 30-day window should not be processed."""
            request = await lifecycle.submit_request(IDENTITY)
            clock.advance(days=29, hours=23)

            assert await lifecycle.get_requests_ready_for_processing() == []
            with pytest.raises(InvalidDeletionTransitionError):
                await lifecycle.process_request(request.id, IDENTITY)

        async def test_deletes_conversations(self, lifecycle, store, clock):
            """A due request should delete every thread of the identity."""
            await _add_threads(store, IDENTITY, 3, clock)
            await _add_threads(store, "bob@example.com", 1, clock)
            request = await lifecycle.submit_request(IDENTITY)
            clock.advance(days=30)

            done = await lifecycle.process_request(request.id, IDENTITY)

            assert done.status == DeletionRequestStatus.COMPLETED
            assert done.conversations_deleted == 3
            assert done.completed_at == clock.now
            assert await store.get_recent_threads(IDENTITY) == []
            assert len(await store.get_recent_threads("bob@example.com")) == 1

        async def test_cancelled_not_processed(self, lifecycle, clock):
            """A cancelled request should never be processed."""
            request = await lifecycle.submit_request(IDENTITY)
            await lifecycle.cancel_request(request.id, IDENTITY)
            clock.advance(days=31)

            with pytest.raises(InvalidDeletionTransitionError):
                await lifecycle.process_request(request.id, IDENTITY)

        async def test_failure_marks_failed(self, store, audit, clock):
            """A failing deletion should leave the request Failed and re-raise."""
            lifecycle = DeletionLifecycle(FlakyDeleteStore(store, [IDENTITY]), audit, clock=clock)
            request = await lifecycle.submit_request(IDENTITY)
            clock.advance(days=30)

            with pytest.raises(RuntimeError):
                await lifecycle.process_request(request.id, IDENTITY)

            stored = await lifecycle.get_request(request.id, IDENTITY)
            assert stored.status == DeletionRequestStatus.FAILED
            assert stored.error_message == "storage unavailable"
            assert await lifecycle.get_requests_ready_for_processing() == []

        async def test_transitions_audited(self, lifecycle, audit, clock):
            """Processing should audit start and completion."""
            request = await lifecycle.submit_request(IDENTITY)
            clock.advance(days=30)
            await lifecycle.process_request(request.id, IDENTITY)

            entries = await audit.deletions.read(IDENTITY, clock.now.date())
            assert {e.action for e in entries} == {
                DeletionAuditAction.PROCESSING_STARTED,
                DeletionAuditAction.COMPLETED,
            }

    class TestConcurrentTransitions:
        """SUT: DeletionLifecycle.cancel_request / process_request"""

        async def test_cancel_and_process_race(self, store, audit, clock):
            """Only one of a concurrent cancel and process should leave Pending."""
            await _add_threads(store, IDENTITY, 2, clock)
            lifecycle = DeletionLifecycle(YieldingReadStore(store), audit, clock=clock)
            request = await lifecycle.submit_request(IDENTITY)
            clock.advance(days=31)

            results = await asyncio.gather(
                lifecycle.cancel_request(request.id, IDENTITY),
                lifecycle.process_request(request.id, IDENTITY),
                return_exceptions=True,
            )

            winners = [r for r in results if not isinstance(r, Exception)]
            losers = [r for r in results if isinstance(r, Exception)]
            assert len(winners) == 1
            assert len(losers) == 1
            assert isinstance(losers[0], InvalidDeletionTransitionError)

            stored = await lifecycle.get_request(request.id, IDENTITY)
            assert stored.status == winners[0].status
            remaining = await store.get_recent_threads(IDENTITY)
            if stored.status == DeletionRequestStatus.CANCELLED:
                assert len(remaining) == 2
            else:
                assert stored.status == DeletionRequestStatus.COMPLETED
                assert remaining == []

        async def test_cancel_after_processing_started(self, lifecycle, store, clock):
            """A request picked up for processing should no longer be cancellable."""
            request = await lifecycle.submit_request(IDENTITY)
            stale = await lifecycle.get_request(request.id, IDENTITY)
            stale.status = DeletionRequestStatus.PROCESSING
            assert await store.update_deletion_request(stale, DeletionRequestStatus.PENDING) is True

            with pytest.raises(InvalidDeletionTransitionError):
                await lifecycle.cancel_request(request.id, IDENTITY)
            assert (await lifecycle.get_request(request.id, IDENTITY)).status == DeletionRequestStatus.PROCESSING

    class TestGetPendingRequest:
        """SUT: DeletionLifecycle.get_pending_request"""

        async def test_none_when_all_terminal(self, lifecycle):
            """get_pending_request() should ignore terminal requests."""
            request = await lifecycle.submit_request(IDENTITY)
            await lifecycle.cancel_request(request.id, IDENTITY)
            assert await lifecycle.get_pending_request(IDENTITY) is None


class TestDeletionProcessor:
    """Tests for DeletionProcessor."""

    class TestRunOnce:
        """SUT: DeletionProcessor.run_once"""

        async def test_nothing_due(self, lifecycle):
            """run_once() should return 0 when nothing is due."""
            await lifecycle.submit_request(IDENTITY)
            processor = DeletionProcessor(lifecycle, RecordingNotifier(), initial_delay=0)
            assert await processor.run_once() == 0

        async def test_continues_past_failures(self, store, audit, clock):
            """One failing request should not stop the others."""
            lifecycle = DeletionLifecycle(FlakyDeleteStore(store, ["bob@example.com"]), audit, clock=clock)
            notifier = RecordingNotifier()
            alice = await lifecycle.submit_request(IDENTITY)
            bob = await lifecycle.submit_request("bob@example.com")
            carol = await lifecycle.submit_request("carol@example.com")
            clock.advance(days=30)

            processor = DeletionProcessor(lifecycle, notifier, initial_delay=0)
            assert await processor.run_once() == 2

            assert (await lifecycle.get_request(alice.id, IDENTITY)).status == DeletionRequestStatus.COMPLETED
            assert (await lifecycle.get_request(bob.id, "bob@example.com")).status == DeletionRequestStatus.FAILED
            assert (await lifecycle.get_request(carol.id, "carol@example.com")).status == DeletionRequestStatus.COMPLETED
            assert sorted(notifier.sent) == sorted([("completed", alice.id), ("completed", carol.id)])

        async def test_confirmation_audited(self, lifecycle, audit, clock):
            """A completed request should record that the confirmation was sent."""
            await lifecycle.submit_request(IDENTITY)
            clock.advance(days=30)

            await DeletionProcessor(lifecycle, RecordingNotifier(), initial_delay=0).run_once()

            entries = await audit.deletions.read(IDENTITY, clock.now.date())
            assert DeletionAuditAction.CONFIRMATION_SENT in {e.action for e in entries}
