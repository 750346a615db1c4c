# config.py - Centralized configuration for the widget chat gateway
"""
All limits and configuration values in one place.

Every value can be overridden from the environment (or a .env file).
Rate limits and TTLs are deployment configuration: tune them per deployment.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


# === INPUT LIMITS ===
MAX_MESSAGE_LENGTH = _env_int("MAX_MESSAGE_LENGTH", 500)        # Max characters for a chat message
MAX_SESSION_ID_LENGTH = 64                                       # Max characters for session ID
MAX_CHATBOT_ID_LENGTH = 50                                       # Matches chatbots.id column width

# === RATE LIMITING (per route class: (requests, window seconds)) ===
RATE_LIMITS = {
    "chat": (_env_int("CHAT_RATE_LIMIT", 20), _env_int("CHAT_RATE_WINDOW_SECONDS", 60)),
    "feedback": (_env_int("FEEDBACK_RATE_LIMIT", 30), _env_int("FEEDBACK_RATE_WINDOW_SECONDS", 3600)),
    "config": (_env_int("CONFIG_RATE_LIMIT", 1000), _env_int("CONFIG_RATE_WINDOW_SECONDS", 3600)),
    "static": (_env_int("STATIC_RATE_LIMIT", 200), _env_int("STATIC_RATE_WINDOW_SECONDS", 3600)),
}

# === CACHING ===
CONFIG_CACHE_TTL_SECONDS = _env_int("CONFIG_CACHE_TTL_SECONDS", 60)   # Seconds a cached public config is served
KV_BACKEND = os.getenv("KV_BACKEND", "memory")                        # "memory" | "database"

# === SESSIONS ===
SESSION_INACTIVITY_TIMEOUT_SECONDS = _env_int("SESSION_INACTIVITY_TIMEOUT_SECONDS", 30 * 60)
SESSION_EXPIRY_CHECK_SECONDS = 60
MAX_CONVERSATION_SESSIONS = 50      # Sessions returned by the conversations listing

# === STORAGE ===
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chatbot.db")

# === LLM SETTINGS ===
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_MAX_TOKENS = _env_int("LLM_MAX_TOKENS", 150)
LLM_TIMEOUT_SECONDS = _env_int("LLM_TIMEOUT_SECONDS", 30)
SYSTEM_PROMPT = "You are a helpful AI assistant. Use the following context to answer questions:\n\n{context}"

# === FIXED USER-FACING RESPONSES ===
NO_DOCUMENTS_RESPONSE = (
    "I apologize, but I don't have enough information to answer your question at the moment. "
    "Please contact our support team for assistance."
)
GENERATION_ERROR_RESPONSE = "Sorry, I encountered an error. Please try again later."

# === ANALYTICS ===
ANALYTICS_HISTORY_DAYS = 7
ANALYTICS_ROLLUP_INTERVAL_SECONDS = _env_int("ANALYTICS_ROLLUP_INTERVAL_SECONDS", 0)   # 0 disables the in-process job

# === LOGGING ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")                        # DEBUG shows cache hits and retrieval sizes

# === INTERNAL API ===
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
