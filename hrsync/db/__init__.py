"""Database package - connection and conversation stores."""

from .connection import DatabaseConnection
from .factory import create_store
from .stores import (
    ConversationStore,
    DuckDBConversationStore,
    InMemoryConversationStore,
    MongoConversationStore,
)

__all__ = [
    "DatabaseConnection",
    "create_store",
    "ConversationStore",
    "DuckDBConversationStore",
    "InMemoryConversationStore",
    "MongoConversationStore",
]
