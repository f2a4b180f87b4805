"""Pytest fixtures for API testing."""

import pytest
from httpx import AsyncClient, ASGITransport
from fastapi import FastAPI

from hrsync.api.v1 import conversations, deletion, submission_queue
from hrsync.config import Settings
from hrsync.db import InMemoryConversationStore
from hrsync.services import build_services
from hrsync.services.gateway import ExternalGateway, SubmissionResult


IDENTITY = "alice@example.com"


class StubGateway(ExternalGateway):
    """HR gateway answering every call with ``result``."""

    def __init__(self):
        super().__init__()
        self.result = SubmissionResult(success=True, status_code=200)
        self.requests = []

    async def submit(self, request):
        self.requests.append(request)
        return SubmissionResult(
            success=self.result.success,
            error_message=self.result.error_message,
            status_code=self.result.status_code,
        )


@pytest.fixture
def gateway():
    """Provide a gateway that succeeds unless told otherwise."""
    return StubGateway()


@pytest.fixture
async def services(tmp_path, clock, gateway):
    """Build every service over an in-memory store."""
    test_settings = Settings(
        store_backend="memory",
        audit_log_dir=str(tmp_path / "audit"),
        enable_retry_processor=False,
        enable_deletion_processor=False,
    )
    container = build_services(test_settings, InMemoryConversationStore(), gateway=gateway, clock=clock)
    yield container
    await container.close()


@pytest.fixture(scope="function")
async def client(services):
    """Create async HTTP client against a test app without lifespan."""
    # Inject dependencies into routers
    conversations.agent = services.agent
    conversations.conversation_service = services.conversations
    conversations.session_manager = services.sessions
    conversations.hub = services.hub
    submission_queue.queue = services.queue
    deletion.lifecycle = services.deletion
    deletion.notifier = services.notifier

    test_app = FastAPI(title="HR Sync Test")
    test_app.include_router(deletion.router)
    test_app.include_router(conversations.router)
    test_app.include_router(submission_queue.router)

    @test_app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "HR Sync Service"}

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def headers():
    """Provide the identity header of the default caller."""
    return {"X-Identity": IDENTITY}
