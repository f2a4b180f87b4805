"""Application logging for hrsync."""

import logging
import os
from typing import Iterable, Optional


APP_LOGGER_NAME = "hrsync"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
REDACTED = "***"

# Client libraries that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "pymongo")


class SecretFilter(logging.Filter):
    """Replaces configured secrets in log messages."""

    def __init__(self, secrets: Iterable[Optional[str]] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        for secret in self.secrets:
            message = message.replace(secret, REDACTED)
        record.msg = message
        record.args = None
        return True


def _has_file_handler(logger: logging.Logger, log_file: str) -> bool:
    path = os.path.abspath(log_file)
    return any(
        isinstance(h, logging.FileHandler) and h.baseFilename == path
        for h in logger.handlers
    )


def setup_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    secrets: Iterable[Optional[str]] = (),
) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Calling it again for the same name reconfigures the level and adds the
    file handler if it is missing, without duplicating handlers.

    Args:
        name: Logger name
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        secrets: Values that must never appear in the output

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file and not _has_file_handler(logger, log_file):
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for handler in logger.handlers:
        handler.setLevel(level)

    for existing in [f for f in logger.filters if isinstance(f, SecretFilter)]:
        logger.removeFilter(existing)
    secret_filter = SecretFilter(secrets)
    if secret_filter.secrets:
        logger.addFilter(secret_filter)

    return logger


# Application logger instance
app_logger: Optional[logging.Logger] = None


def init_app_logger(settings) -> logging.Logger:
    """
    Initialize the application logger with settings.

    ``debug`` forces DEBUG level and an empty ``log_file`` logs to the
    console only. The HR API key is redacted from every message, and the
    HTTP and MongoDB client loggers stay at WARNING unless debugging.

    Args:
        settings: Application settings instance

    Returns:
        Configured application logger
    """
    global app_logger

    log_level = "DEBUG" if settings.debug else settings.log_level
    app_logger = setup_logger(
        name=APP_LOGGER_NAME,
        log_level=log_level,
        log_file=settings.log_file or None,
        secrets=[settings.hr_api_key],
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)

    return app_logger


def get_app_logger() -> logging.Logger:
    """
    Get the application logger.

    Returns:
        Application logger instance
    """
    if app_logger is None:
        return setup_logger(APP_LOGGER_NAME)

    return app_logger
