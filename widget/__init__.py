# widget/__init__.py
from .client import WidgetClient, WidgetTransportError, RateLimitedError, ChatbotUnavailableError, ChatReply
from .storage import LocalStorage, MemoryStorage, FileStorage
from .state import WidgetSession, WidgetState, SendInProgressError, InvalidStateError, is_valid
from .expiry import ExpiryMonitor

__all__ = [
    "WidgetClient",
    "WidgetTransportError",
    "RateLimitedError",
    "ChatbotUnavailableError",
    "ChatReply",
    "LocalStorage",
    "MemoryStorage",
    "FileStorage",
    "WidgetSession",
    "WidgetState",
    "SendInProgressError",
    "InvalidStateError",
    "is_valid",
    "ExpiryMonitor",
]
