"""
Logging configuration for the todo assistant service.

Configures the root logger once at startup and pins the levels of a few
chatty third-party loggers.
"""

import logging
import os

_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def configure_logging() -> None:
    """Configure logging for the application."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    logging.basicConfig(level=log_level, format=_FORMAT)

    loggers_config = {
        "todo_assistant.chat": os.getenv("LOG_LEVEL_CHAT", log_level_name).upper(),
        # Client libraries log every request at INFO
        "httpx": "WARNING",
        "openai": "WARNING",
    }

    for logger_name, level_name in loggers_config.items():
        logging.getLogger(logger_name).setLevel(getattr(logging, level_name, log_level))

