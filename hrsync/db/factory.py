"""Store selection from settings."""

from .connection import DatabaseConnection
from .stores import (
    ConversationStore,
    DuckDBConversationStore,
    InMemoryConversationStore,
    MongoConversationStore,
)
from ..utils.logger import get_app_logger


async def create_store(settings) -> ConversationStore:
    """
    Build the conversation store configured by ``settings.store_backend``.

    Args:
        settings: Application settings instance

    Returns:
        A ready-to-use ConversationStore
    """
    logger = get_app_logger()
    backend = settings.get_store_backend()

    if backend == "duckdb":
        store = DuckDBConversationStore(DatabaseConnection(settings.database_path))
    elif backend == "mongodb":
        store = MongoConversationStore.from_url(settings.mongodb_url, settings.mongodb_database)
        await store.ensure_indexes()
    else:
        store = InMemoryConversationStore()

    logger.info(f"Using {store.backend_name} conversation store")
    return store
