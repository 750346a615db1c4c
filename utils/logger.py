# utils/logger.py - Centralized logging configuration for the chat gateway
import logging
import sys
from typing import Optional, Union

from config import LOG_LEVEL

# Log format with timestamp, level, module, and message
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_level(value: Union[str, int, None]) -> int:
    """Turn a LOG_LEVEL value ("debug", "WARNING", 10) into a logging level; unknown values mean INFO."""
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Create a configured logger instance; the level defaults to LOG_LEVEL."""
    logger = logging.getLogger(name)
    level = parse_level(LOG_LEVEL) if level is None else level

    # Avoid adding handlers multiple times
    if not logger.handlers:
        logger.setLevel(level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


# Pre-configured loggers for different modules
def get_server_logger():
    """Logger for API server operations."""
    return setup_logger("chatbot.server")


def get_limiter_logger():
    """Logger for rate limiting decisions and counter store failures."""
    return setup_logger("chatbot.limiter")


def get_cache_logger():
    """Logger for public config caching."""
    return setup_logger("chatbot.cache")


def get_session_logger():
    """Logger for session ledger and conversation logging."""
    return setup_logger("chatbot.session")


def get_chat_logger():
    """Logger for response generation."""
    return setup_logger("chatbot.chat")


def get_analytics_logger():
    """Logger for analytics rollups."""
    return setup_logger("chatbot.analytics")


def get_widget_logger():
    """Logger for the widget client."""
    return setup_logger("chatbot.widget")
