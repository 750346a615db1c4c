# services.py - Wiring of stores and coordinators used by the HTTP layer
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from analytics.rollup import AnalyticsService
from cache.config_cache import ConfigCache
from chat.generator import OpenAIResponseGenerator, ResponseGenerator
from chat.pipeline import ReplyPipeline
from config import CONFIG_CACHE_TTL_SECONDS, DATABASE_URL, KV_BACKEND, RATE_LIMITS
from sessions.coordinator import SessionCoordinator
from storage.chatbots import ChatbotStore
from storage.database import create_db_engine, create_session_factory, init_db
from storage.kv_store import DatabaseStore, KeyValueStore, MemoryStore
from utils.rate_limiter import RateLimiter


@dataclass
class Services:
    engine: Engine
    session_factory: sessionmaker
    kv_store: KeyValueStore
    chatbots: ChatbotStore
    rate_limiter: RateLimiter
    config_cache: ConfigCache
    sessions: SessionCoordinator
    pipeline: ReplyPipeline
    analytics: AnalyticsService


def build_services(
    database_url: str = DATABASE_URL,
    kv_backend: str = KV_BACKEND,
    kv_store: Optional[KeyValueStore] = None,
    generator: Optional[ResponseGenerator] = None,
    rate_limits: Optional[Dict[str, Tuple[int, int]]] = None,
    config_cache_ttl: int = CONFIG_CACHE_TTL_SECONDS,
    clock: Callable[[], float] = time.time,
) -> Services:
    """Create the database schema and every service, injecting stores explicitly."""
    engine = create_db_engine(database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    if kv_store is None:
        if kv_backend == "database":
            kv_store = DatabaseStore(session_factory, clock=clock)
        elif kv_backend == "memory":
            kv_store = MemoryStore(clock=clock)
        else:
            raise ValueError(f"Unknown KV backend: {kv_backend}")

    chatbots = ChatbotStore(session_factory)
    config_cache = ConfigCache(kv_store, chatbots, ttl_seconds=config_cache_ttl, clock=clock)
    chatbots.on_update(config_cache.invalidate)

    return Services(
        engine=engine,
        session_factory=session_factory,
        kv_store=kv_store,
        chatbots=chatbots,
        rate_limiter=RateLimiter(kv_store, rate_limits or RATE_LIMITS, clock=clock),
        config_cache=config_cache,
        sessions=SessionCoordinator(session_factory),
        pipeline=ReplyPipeline(chatbots.get_documents, generator or OpenAIResponseGenerator()),
        analytics=AnalyticsService(session_factory),
    )
