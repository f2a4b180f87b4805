"""API v1 package."""

from .conversations import router as conversations_router
from .deletion import router as deletion_router
from .submission_queue import router as submission_queue_router

__all__ = ["conversations_router", "deletion_router", "submission_queue_router"]
