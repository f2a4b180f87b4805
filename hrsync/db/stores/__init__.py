"""Conversation store backends."""

from .base import ConversationStore
from .duckdb_store import DuckDBConversationStore
from .memory_store import InMemoryConversationStore
from .mongo_store import MongoConversationStore

__all__ = [
    "ConversationStore",
    "DuckDBConversationStore",
    "InMemoryConversationStore",
    "MongoConversationStore",
]
