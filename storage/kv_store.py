# storage/kv_store.py - TTL-capable key/value stores shared by the limiter and config cache
"""
Key/value stores with per-entry expiry.

The rate limiter and config cache only ever talk to a ``KeyValueStore``, so
the same logic runs against a single-process dict or a store shared by every
worker. Values must be JSON-serialisable.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from storage.database import dialect_insert
from storage.models import KVEntry


class KVStoreError(Exception):
    """Raised when the backing store cannot be reached or read."""
    pass


class KeyValueStore(ABC):
    """Interface: get, put-with-ttl, delete."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store value, expiring ttl_seconds from now."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""


class MemoryStore(KeyValueStore):
    """Single-process store. Expired entries are dropped lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseStore(KeyValueStore):
    """Store on the ``kv_entries`` table, visible to every worker sharing the database."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], float] = time.time):
        self._session_factory = session_factory
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        try:
            with self._session_factory() as db:
                entry = db.scalar(select(KVEntry).where(KVEntry.key == key))
        except SQLAlchemyError as e:
            raise KVStoreError(f"Failed to read key '{key}': {e}") from e

        if entry is None or self._clock() >= entry.expires_at:
            return None
        return json.loads(entry.value)

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        payload = json.dumps(value)
        expires_at = self._clock() + ttl_seconds
        try:
            with self._session_factory.begin() as db:
                stmt = dialect_insert(db, KVEntry)
                if stmt is None:
                    db.merge(KVEntry(key=key, value=payload, expires_at=expires_at))
                    return
                stmt = stmt.values(key=key, value=payload, expires_at=expires_at)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[KVEntry.key],
                    set_={"value": payload, "expires_at": expires_at},
                )
                db.execute(stmt)
        except SQLAlchemyError as e:
            raise KVStoreError(f"Failed to write key '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self._session_factory.begin() as db:
                db.execute(delete(KVEntry).where(KVEntry.key == key))
        except SQLAlchemyError as e:
            raise KVStoreError(f"Failed to delete key '{key}': {e}") from e

    def purge_expired(self) -> int:
        """Delete expired rows. Returns number of rows removed."""
        try:
            with self._session_factory.begin() as db:
                result = db.execute(delete(KVEntry).where(KVEntry.expires_at <= self._clock()))
                return result.rowcount
        except SQLAlchemyError as e:
            raise KVStoreError(f"Failed to purge expired keys: {e}") from e
