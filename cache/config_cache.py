# cache/config_cache.py - Read-through cache for public chatbot display config
"""
Read-through cache of the public, cacheable view of a chatbot.

Readers may see a stale value for up to the TTL when an invalidation is
skipped or races with a read that already fetched the old row. Cache store
failures never fail a read: it falls through to the chatbot store and skips
the write.
"""

import time
from dataclasses import asdict, dataclass
from typing import Callable

from storage.chatbots import ChatbotStore
from storage.kv_store import KeyValueStore, KVStoreError
from utils.logger import get_cache_logger

logger = get_cache_logger()


class ChatbotNotFoundError(Exception):
    """Chatbot does not exist or is not deployed."""
    pass


@dataclass(frozen=True)
class PublicConfig:
    chatbot_id: str
    name: str
    color: str
    welcome_message: str
    expires_at: float

    def to_response(self) -> dict:
        return {"name": self.name, "color": self.color, "welcomeMessage": self.welcome_message}


def cache_key(chatbot_id: str) -> str:
    return f"chatbot:{chatbot_id}"


class ConfigCache:
    def __init__(
        self,
        store: KeyValueStore,
        source: ChatbotStore,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._source = source
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def get(self, chatbot_id: str) -> PublicConfig:
        key = cache_key(chatbot_id)
        now = self._clock()
        cache_available = True

        try:
            cached = self._store.get(key)
        except KVStoreError as e:
            logger.warning(f"[{chatbot_id}] Cache read failed, querying source directly: {e}")
            cached, cache_available = None, False

        if cached is not None and cached["expires_at"] > now:
            logger.debug(f"[{chatbot_id}] Config cache hit")
            return PublicConfig(**cached)

        record = self._source.get_public_config(chatbot_id)
        if record is None or not record.deployed:
            raise ChatbotNotFoundError(f"Chatbot {chatbot_id} not found or not deployed")

        config = PublicConfig(
            chatbot_id=record.id,
            name=record.name,
            color=record.color,
            welcome_message=record.welcome_message,
            expires_at=now + self._ttl_seconds,
        )

        if cache_available:
            try:
                self._store.put(key, asdict(config), ttl_seconds=self._ttl_seconds)
            except KVStoreError as e:
                logger.warning(f"[{chatbot_id}] Cache write skipped: {e}")

        logger.debug(f"[{chatbot_id}] Config cache refreshed from source")
        return config

    def invalidate(self, chatbot_id: str) -> None:
        try:
            self._store.delete(cache_key(chatbot_id))
            logger.info(f"[{chatbot_id}] Config cache invalidated")
        except KVStoreError as e:
            # Entry still expires via TTL
            logger.warning(f"[{chatbot_id}] Cache invalidation failed: {e}")
