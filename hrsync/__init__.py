"""Reliable clock-in/clock-out delivery and conversation state sync."""

__version__ = "1.0.0"
