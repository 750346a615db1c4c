# utils/rate_limiter.py - Fixed-window rate limiter over a pluggable counter store
"""
Fixed-window request admission control keyed by client identity and route class.

Counters live in an injected KeyValueStore, so the same limiter works against
an in-process dict or a store shared by every worker. The read-then-increment
is not atomic: concurrent requests at the boundary can overshoot the limit by
at most the number of requests in flight for that key.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request

from storage.kv_store import KeyValueStore, KVStoreError
from utils.logger import get_limiter_logger

logger = get_limiter_logger()


@dataclass(frozen=True)
class Admission:
    allowed: bool
    retry_after: Optional[int] = None


class RateLimiter:
    """Fixed-window counter per ``identity:route_class``."""

    def __init__(
        self,
        store: KeyValueStore,
        limits: Dict[str, Tuple[int, int]],
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._limits = dict(limits)
        self._clock = clock

    @property
    def limits(self) -> Dict[str, Tuple[int, int]]:
        return dict(self._limits)

    def admit(self, identity: str, route_class: str, limit: int, window_seconds: int) -> Admission:
        """
        Decide whether one request may proceed.

        Args:
            identity: Client identity (usually the IP address)
            route_class: Counter namespace, e.g. "chat" or "config"
            limit: Maximum requests per window
            window_seconds: Window length in seconds

        Returns:
            Admission with retry_after (whole seconds, >= 1) when rejected
        """
        key = f"rate:{identity}:{route_class}"
        now = self._clock()

        try:
            counter = self._store.get(key)
        except KVStoreError as e:
            # Fail open: chat availability beats strict quota enforcement
            logger.warning(f"[{route_class}] Counter store unreachable, admitting {identity}: {e}")
            return Admission(allowed=True)

        if counter is None or now >= counter["reset_at"]:
            count, reset_at = 0, now + window_seconds
        else:
            count, reset_at = counter["count"], counter["reset_at"]

        if count >= limit:
            retry_after = max(1, math.ceil(reset_at - now))
            logger.warning(
                f"[{route_class}] Rate limit exceeded for {identity} "
                f"({count}/{limit} per {window_seconds}s), retry in {retry_after}s"
            )
            return Admission(allowed=False, retry_after=retry_after)

        try:
            self._store.put(key, {"count": count + 1, "reset_at": reset_at}, ttl_seconds=reset_at - now)
        except KVStoreError as e:
            logger.warning(f"[{route_class}] Counter store write failed, admitting {identity}: {e}")

        return Admission(allowed=True)

    def admit_route(self, identity: str, route_class: str) -> Admission:
        """Admit using the configured (limit, window) for route_class."""
        limit, window_seconds = self._limits[route_class]
        return self.admit(identity, route_class, limit, window_seconds)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    # Edge proxy header (Cloudflare)
    connecting_ip = request.headers.get("CF-Connecting-IP")
    if connecting_ip:
        return connecting_ip.strip()

    # Check for forwarded IP (behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    # Check for real IP header
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Fall back to direct client
    return request.client.host if request.client else "unknown"


def check_rate_limit(request: Request, route_class: str) -> None:
    """
    Check if request is within the limits of its route class.

    Args:
        request: FastAPI request object; the limiter is read from app state
        route_class: Counter namespace configured in RATE_LIMITS

    Raises:
        HTTPException: 429 Too Many Requests if limit exceeded
    """
    limiter: RateLimiter = request.app.state.services.rate_limiter
    admission = limiter.admit_route(get_client_ip(request), route_class)

    if not admission.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {admission.retry_after} seconds.",
            headers={"Retry-After": str(admission.retry_after)},
        )


def rate_limited(route_class: str) -> Callable[[Request], None]:
    """
    Route dependency admitting a request before its body is validated.

    Usage:
        @router.post("/api/chat", dependencies=[Depends(rate_limited("chat"))])
    """
    def dependency(request: Request) -> None:
        check_rate_limit(request, route_class)

    return dependency
