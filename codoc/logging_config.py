"""Logging configuration for the Codoc chatbot.

Stream lifecycle events from ``codoc.*`` go to stderr at the configured
level. httpx request logs would interleave with streamed assistant text
in the CLI, so transport loggers are held at WARNING.
"""

import logging
import sys
from typing import Literal

from codoc.settings import get_settings

# Transport and event-loop loggers that are chatty during long-lived streams
NOISY_LOGGERS = [
    "httpcore",
    "httpx",
    "asyncio",
]


def suppress_noisy_loggers() -> None:
    """Hold transport loggers at WARNING and drop any handlers they installed."""
    for logger_name in NOISY_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.WARNING)
        logger.handlers.clear()


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
) -> None:
    """Install the single stderr handler used by the CLI.

    Safe to call repeatedly; existing root handlers are replaced.

    Args:
        level: Level for ``codoc`` loggers; defaults to ``settings.log_level``.
    """
    log_level = level or get_settings().log_level

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Filtering happens at the handler
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level))
    console_handler.setFormatter(logging.Formatter("%(levelname)s | %(name)s | %(message)s"))
    root_logger.addHandler(console_handler)

    logging.getLogger("codoc").setLevel(getattr(logging, log_level))

    suppress_noisy_loggers()


# Configure logging on module import
configure_logging()
