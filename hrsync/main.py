"""FastAPI main application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .db import create_store
from .services import ServiceContainer, build_services
from .utils.logger import init_app_logger
from .api.v1 import conversations, deletion, submission_queue


# Initialize logger
logger = init_app_logger(settings)

# Global service container
services: ServiceContainer = None


def _mask(secret) -> str:
    if not secret:
        return "Not set"
    return secret[:4] + "..." + secret[-4:] if len(secret) > 12 else "***"


def install_services(container: ServiceContainer) -> None:
    """Hand the services to the API modules."""
    conversations.agent = container.agent
    conversations.conversation_service = container.conversations
    conversations.session_manager = container.sessions
    conversations.hub = container.hub
    submission_queue.queue = container.queue
    deletion.lifecycle = container.deletion
    deletion.notifier = container.notifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info("=" * 70)
    logger.info("Starting HR Sync Service...")
    logger.info("=" * 70)

    logger.info("")
    logger.info("📡 Server Configuration:")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")
    logger.info(f"  Debug: {settings.debug}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Log File: {settings.log_file}")

    logger.info("")
    logger.info("🗄️  Storage Configuration:")
    logger.info(f"  Backend: {settings.store_backend}")
    if settings.get_store_backend() == "duckdb":
        logger.info(f"  Database: {settings.database_path}")
    elif settings.get_store_backend() == "mongodb":
        logger.info(f"  Database: {settings.mongodb_database}")
    logger.info(f"  Audit Dir: {settings.audit_log_dir}")

    logger.info("")
    logger.info("🏢 HR Gateway Configuration:")
    logger.info(f"  Base URL: {settings.hr_api_base_url}")
    logger.info(f"  API Key: {_mask(settings.hr_api_key)}")
    logger.info(f"  Request Timeout: {settings.hr_request_timeout}s")

    logger.info("")
    logger.info("🔁 Submission Queue Configuration:")
    logger.info(f"  Retry Processor: {'enabled' if settings.enable_retry_processor else 'disabled'}")
    logger.info(f"  Poll Interval: {settings.queue_poll_interval}s")
    logger.info(f"  Batch Size: {settings.queue_batch_size}")
    logger.info(f"  Max Retries: {settings.queue_max_retries}")
    logger.info(f"  Processing Timeout: {settings.processing_timeout}s")

    logger.info("")
    logger.info("🗑️  Deletion Configuration:")
    logger.info(f"  Deletion Processor: {'enabled' if settings.enable_deletion_processor else 'disabled'}")
    logger.info(f"  Window: {settings.deletion_window_days} days")
    logger.info(f"  Interval: {settings.deletion_interval_hours}h")

    logger.info("")
    logger.info("🚀 Initializing Services...")
    global services
    store = await create_store(settings)
    services = build_services(settings, store)
    install_services(services)

    if settings.enable_retry_processor:
        services.retry_processor.start()
    if settings.enable_deletion_processor:
        services.deletion_processor.start()

    logger.info("")
    logger.info("=" * 70)
    logger.info("✅ HR Sync Service started successfully!")
    logger.info(f"📍 Access at: http://{settings.host}:{settings.port}")
    logger.info(f"📚 API Docs: http://{settings.host}:{settings.port}/docs")
    logger.info("=" * 70)

    yield

    # Shutdown
    logger.info("")
    logger.info("=" * 70)
    logger.info("Shutting down HR Sync Service...")
    logger.info("=" * 70)

    if services:
        await services.close()

    logger.info("✅ HR Sync Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title="HR Sync Service",
    description="Reliable clock-in/clock-out delivery with streamed conversation state",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify allowed origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Deletion routes share the conversations prefix and must match before /{thread_id}
app.include_router(deletion.router)
app.include_router(conversations.router)
app.include_router(submission_queue.router)


@app.get("/health")
async def health():
    """
    Simple health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": "HR Sync Service"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hrsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
