"""Tests for SubmissionRetryProcessor."""

import asyncio

import pytest

from hrsync.errors import GatewayError
from hrsync.models import QueueItemStatus, SubmissionAction
from hrsync.services.conversation_service import PENDING_NOTICES_KEY, ConversationService
from hrsync.services.gateway import ExternalGateway, SubmissionResult
from hrsync.services.retry_processor import SUBMISSION_FAILED, SubmissionRetryProcessor
from hrsync.services.submission_queue import SubmissionQueue
from hrsync.streaming import ErrorEvent, NotificationHub, StateSnapshotEvent


IDENTITY = "alice@example.com"


class ScriptedGateway(ExternalGateway):
    """Gateway returning (or raising) queued outcomes in order."""

    def __init__(self, *outcomes):
        super().__init__()
        self.outcomes = list(outcomes)
        self.requests = []

    async def submit(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class HangingGateway(ExternalGateway):
    """Gateway that never answers."""

    async def submit(self, request):
        await asyncio.sleep(3600)


def _ok():
    return SubmissionResult(success=True, status_code=200, response={"id": "hr-1"})


def _down():
    return SubmissionResult(success=False, error_message="HR API unreachable", status_code=502)


@pytest.fixture
def conversations(memory_store, clock):
    """Provide a ConversationService."""
    return ConversationService(memory_store, clock=clock)


@pytest.fixture
def queue(memory_store, clock):
    """Provide a SubmissionQueue."""
    return SubmissionQueue(memory_store, max_retries=3, processing_timeout=30, clock=clock)


@pytest.fixture
def hub():
    """Provide a NotificationHub."""
    return NotificationHub()


def _make_processor(queue, gateway, conversations, audit, hub, **overrides):
    defaults = dict(interval=10, batch_size=50, processing_timeout=5)
    defaults.update(overrides)
    return SubmissionRetryProcessor(queue, gateway, conversations, audit, hub=hub, **defaults)


async def _queued_clock_in(queue, conversations, clock):
    thread = await conversations.get_or_create_thread(IDENTITY, "s1")
    item = await queue.enqueue(
        owner_identity=IDENTITY,
        action=SubmissionAction.CLOCK_IN,
        timestamp=clock.now,
        conversation_thread_id=thread.id,
        message_id="m1",
        user_message="clock me in",
        error_message="HR API unreachable",
        status_code=502,
    )
    return thread, item


async def _drain(stream):
    stream.close_nowait()
    return [event async for event in stream.events()]


class TestSubmissionRetryProcessor:
    """Tests for SubmissionRetryProcessor."""

    class TestRunOnce:
        """SUT: SubmissionRetryProcessor.run_once"""

        async def test_nothing_ready(self, queue, conversations, audit, hub, clock):
            """run_once() should not call the gateway before the first retry is due."""
            gateway = ScriptedGateway()
            await _queued_clock_in(queue, conversations, clock)

            processor = _make_processor(queue, gateway, conversations, audit, hub)
            assert await processor.run_once() == 0
            assert gateway.requests == []

        async def test_success_applies_state(self, queue, conversations, audit, hub, clock):
            """A successful retry should complete the item and clock the thread in."""
            thread, item = await _queued_clock_in(queue, conversations, clock)
            processor = _make_processor(queue, ScriptedGateway(_ok()), conversations, audit, hub)

            clock.advance(seconds=1)
            assert await processor.run_once() == 1

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.status == QueueItemStatus.COMPLETED
            updated = await conversations.get_thread(thread.id, IDENTITY)
            assert updated.state.is_clocked_in is True
            assert updated.state.last_clock_in == item.timestamp

        async def test_success_pushes_snapshot(self, queue, conversations, audit, hub, clock):
            """A connected client should receive the confirmed state."""
            await _queued_clock_in(queue, conversations, clock)
            stream = hub.subscribe(IDENTITY)
            processor = _make_processor(queue, ScriptedGateway(_ok()), conversations, audit, hub)

            clock.advance(seconds=1)
            await processor.run_once()

            events = await _drain(stream)
            assert len(events) == 1
            assert isinstance(events[0], StateSnapshotEvent)
            assert events[0].state["isClockedIn"] is True

        async def test_failure_reschedules(self, queue, conversations, audit, hub, clock):
            """A failed retry with attempts left should go back to pending."""
            _, item = await _queued_clock_in(queue, conversations, clock)
            processor = _make_processor(queue, ScriptedGateway(_down()), conversations, audit, hub)

            clock.advance(seconds=1)
            await processor.run_once()

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.status == QueueItemStatus.PENDING
            assert stored.retry_count == 1

        async def test_exhausted_notifies_connected_client(self, queue, conversations, audit, hub, clock):
            """The final failure should reach a connected client as a non-recoverable error."""
            _, item = await _queued_clock_in(queue, conversations, clock)
            stream = hub.subscribe(IDENTITY)
            processor = _make_processor(
                queue, ScriptedGateway(_down(), _down(), _down()), conversations, audit, hub
            )

            for seconds in (1, 2, 4):
                clock.advance(seconds=seconds)
                await processor.run_once()

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.status == QueueItemStatus.FAILED

            events = await _drain(stream)
            errors = [e for e in events if isinstance(e, ErrorEvent)]
            assert len(errors) == 1
            assert errors[0].code == SUBMISSION_FAILED
            assert errors[0].recoverable is False
            assert errors[0].details["queueItemId"] == item.id

        async def test_exhausted_without_client_leaves_notice(self, queue, conversations, audit, hub, clock):
            """With nobody connected the failure should wait on the thread."""
            thread, item = await _queued_clock_in(queue, conversations, clock)
            processor = _make_processor(
                queue, ScriptedGateway(_down(), _down(), _down()), conversations, audit, hub
            )

            for seconds in (1, 2, 4):
                clock.advance(seconds=seconds)
                await processor.run_once()

            updated = await conversations.get_thread(thread.id, IDENTITY)
            notices = updated.state.context_memory[PENDING_NOTICES_KEY]
            assert len(notices) == 1
            assert notices[0]["code"] == SUBMISSION_FAILED
            assert notices[0]["details"]["queueItemId"] == item.id

        async def test_gateway_error_status_recorded(self, queue, conversations, audit, hub, clock):
            """A raised GatewayError should be recorded with its status code."""
            _, item = await _queued_clock_in(queue, conversations, clock)
            gateway = ScriptedGateway(GatewayError("rate limited", status_code=429))
            processor = _make_processor(queue, gateway, conversations, audit, hub)

            clock.advance(seconds=1)
            await processor.run_once()

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.last_status_code == 429
            assert stored.last_error == "rate limited"

        async def test_timeout_recorded_as_504(self, queue, conversations, audit, hub, clock):
            """An attempt exceeding processing_timeout should count as a 504 failure."""
            _, item = await _queued_clock_in(queue, conversations, clock)
            processor = _make_processor(
                queue, HangingGateway(), conversations, audit, hub, processing_timeout=0.01
            )

            clock.advance(seconds=1)
            await processor.run_once()

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.status == QueueItemStatus.PENDING
            assert stored.last_status_code == 504

        async def test_reclaims_expired_lease(self, queue, conversations, audit, hub, clock):
            """An item abandoned in processing should be retried after its lease expires."""
            _, item = await _queued_clock_in(queue, conversations, clock)
            clock.advance(seconds=1)
            abandoned = (await queue.get_pending_ready_for_retry())[0]
            await queue.try_lock(abandoned)

            gateway = ScriptedGateway(_ok())
            processor = _make_processor(queue, gateway, conversations, audit, hub)
            clock.advance(seconds=31)
            await processor.run_once()

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.status == QueueItemStatus.PENDING
            assert stored.last_status_code == 504
            assert gateway.requests == []

            clock.advance(seconds=2)
            await processor.run_once()

            stored = await queue.get_item(item.id, IDENTITY)
            assert stored.status == QueueItemStatus.COMPLETED
            assert stored.retry_count == 2
            assert len(gateway.requests) == 1

        async def test_attempts_audited(self, queue, conversations, audit, hub, clock):
            """Every attempt should be written to the audit trail."""
            await _queued_clock_in(queue, conversations, clock)
            processor = _make_processor(queue, ScriptedGateway(_ok()), conversations, audit, hub)

            clock.advance(seconds=1)
            await processor.run_once()

            entries = await audit.submissions.read(IDENTITY, clock.now.date())
            assert len(entries) == 1
            assert entries[0].action == "clock-in"
            assert entries[0].status_code == 200
            assert entries[0].request_data["attempt"] == 1

    class TestProcessItem:
        """SUT: SubmissionRetryProcessor.process_item"""

        async def test_locked_elsewhere(self, queue, conversations, audit, hub, clock):
            """process_item() should skip an item another worker already locked."""
            await _queued_clock_in(queue, conversations, clock)
            clock.advance(seconds=1)
            mine = (await queue.get_pending_ready_for_retry())[0]
            theirs = (await queue.get_pending_ready_for_retry())[0]
            await queue.try_lock(theirs)

            gateway = ScriptedGateway(_ok())
            processor = _make_processor(queue, gateway, conversations, audit, hub)
            assert await processor.process_item(mine) is False
            assert gateway.requests == []
