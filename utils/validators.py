# utils/validators.py - Input validation utilities
import re

from config import MAX_CHATBOT_ID_LENGTH, MAX_MESSAGE_LENGTH, MAX_SESSION_ID_LENGTH

CHATBOT_ID_PATTERN = re.compile(r"^cb_[a-z0-9]+$")
SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def validate_chatbot_id(chatbot_id: str) -> str:
    """
    Validate chatbot ID format (``cb_`` followed by lowercase alphanumerics).

    Raises:
        ValueError: If chatbot ID is invalid
    """
    if not chatbot_id or not isinstance(chatbot_id, str):
        raise ValueError("chatbotId is required")

    chatbot_id = chatbot_id.strip()

    if len(chatbot_id) > MAX_CHATBOT_ID_LENGTH:
        raise ValueError(f"chatbotId exceeds maximum length ({MAX_CHATBOT_ID_LENGTH} characters)")

    if not CHATBOT_ID_PATTERN.match(chatbot_id):
        raise ValueError("chatbotId is malformed")

    return chatbot_id


def validate_session_id(session_id: str) -> str:
    """
    Validate session ID format.

    Args:
        session_id: The session ID to validate

    Returns:
        Validated session ID

    Raises:
        ValueError: If session ID is invalid
    """
    if not session_id or not isinstance(session_id, str):
        raise ValueError("sessionId is required")

    session_id = session_id.strip()

    if not session_id:
        raise ValueError("sessionId cannot be empty")

    # Allow alphanumeric, underscore, hyphen
    if not SESSION_ID_PATTERN.match(session_id):
        raise ValueError("sessionId contains invalid characters. Use only alphanumeric, underscore, or hyphen")

    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValueError(f"sessionId exceeds maximum length ({MAX_SESSION_ID_LENGTH} characters)")

    return session_id


def validate_message(message: str) -> str:
    """Strip a chat message and enforce non-empty / maximum length."""
    if not isinstance(message, str) or not message.strip():
        raise ValueError("Message cannot be empty")
    message = message.strip()
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message too long (maximum {MAX_MESSAGE_LENGTH} characters)")
    return message


def validate_color(color: str) -> str:
    """Validate a ``#RRGGBB`` widget color."""
    if not isinstance(color, str) or not COLOR_PATTERN.match(color):
        raise ValueError("color must be a hex value like #667eea")
    return color
