# utils/__init__.py
# utils.rate_limiter is imported directly: it depends on storage, which logs through utils.logger
from .logger import (
    setup_logger,
    parse_level,
    get_server_logger,
    get_limiter_logger,
    get_cache_logger,
    get_session_logger,
    get_chat_logger,
    get_analytics_logger,
    get_widget_logger,
)
from .validators import validate_chatbot_id, validate_session_id, validate_message, validate_color

__all__ = [
    "setup_logger",
    "parse_level",
    "get_server_logger",
    "get_limiter_logger",
    "get_cache_logger",
    "get_session_logger",
    "get_chat_logger",
    "get_analytics_logger",
    "get_widget_logger",
    "validate_chatbot_id",
    "validate_session_id",
    "validate_message",
    "validate_color",
]
