"""Utilities package."""

from .logger import get_app_logger, setup_logger, init_app_logger
from .clock import utcnow, ensure_utc, to_epoch, to_epoch_ms

__all__ = [
    "get_app_logger",
    "setup_logger",
    "init_app_logger",
    "utcnow",
    "ensure_utc",
    "to_epoch",
    "to_epoch_ms",
]
