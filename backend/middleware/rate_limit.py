"""Fixed-window rate limiting keyed by client address and route prefix."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..config import settings
from ..errors import error_response

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    prefixes: Tuple[str, ...]
    max_requests: int
    window_seconds: int

    def matches(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.prefixes)


class RateLimitStore:
    """Counts hits per key within a fixed window."""

    def hit(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Register one hit; return (hits in current window, seconds until reset)."""
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local counters; each worker process limits independently."""

    def __init__(self, sweep_every: int = 1000, clock=time.time):
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._sweep_every = sweep_every
        self._since_sweep = 0

    def hit(self, key: str, window_seconds: int) -> Tuple[int, int]:
        now = self._clock()
        with self._lock:
            self._since_sweep += 1
            if self._since_sweep >= self._sweep_every:
                self._evict(now)
            start, count = self._windows.get(key, (now, 0))
            if now - start >= window_seconds:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count)
            return count, max(1, int(start + window_seconds - now))

    def _evict(self, now: float) -> None:
        # Keys carry their window length as the last segment.
        stale = [
            k for k, (start, _) in self._windows.items()
            if now - start >= int(k.rsplit(":", 1)[-1])
        ]
        for k in stale:
            del self._windows[k]
        self._since_sweep = 0

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._since_sweep = 0


class RedisRateLimitStore(RateLimitStore):
    """Shared counters for multi-instance deployments."""

    def __init__(self, client, prefix: str = "ratelimit"):
        self.client = client
        self.prefix = prefix

    def hit(self, key: str, window_seconds: int) -> Tuple[int, int]:
        redis_key = f"{self.prefix}:{key}"
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self.client.expire(redis_key, window_seconds)
            ttl = window_seconds
        return int(count), int(ttl)

    def reset(self) -> None:
        for key in self.client.scan_iter(f"{self.prefix}:*"):
            self.client.delete(key)


def default_rules() -> List[RateLimitRule]:
    return [
        RateLimitRule(
            "auth",
            ("/auth/login", "/auth/register"),
            settings.AUTH_RATE_LIMIT_MAX_REQUESTS,
            settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
        ),
        RateLimitRule(
            "reports",
            ("/reports",),
            settings.REPORTS_RATE_LIMIT_MAX_REQUESTS,
            settings.REPORTS_RATE_LIMIT_WINDOW_SECONDS,
        ),
        RateLimitRule(
            "notifications",
            ("/notifications",),
            settings.NOTIFICATIONS_RATE_LIMIT_MAX_REQUESTS,
            settings.NOTIFICATIONS_RATE_LIMIT_WINDOW_SECONDS,
        ),
    ]


def build_store() -> RateLimitStore:
    if settings.RATE_LIMIT_BACKEND == "redis":
        from ..rq_connection import get_redis

        return RedisRateLimitStore(get_redis())
    return InMemoryRateLimitStore()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests by IP address: one global window plus per-prefix rules."""

    EXEMPT_PATHS = ("/health", "/docs", "/openapi.json")

    def __init__(
        self,
        app,
        store: Optional[RateLimitStore] = None,
        rules: Optional[Sequence[RateLimitRule]] = None,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        super().__init__(app)
        self.store = store or InMemoryRateLimitStore()
        self.rules = list(rules) if rules is not None else default_rules()
        self.global_rule = RateLimitRule(
            "global",
            ("/",),
            max_requests or settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS,
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if request.method == "OPTIONS" or path.startswith(self.EXEMPT_PATHS):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        applicable = [self.global_rule] + [r for r in self.rules if r.matches(path)]
        for rule in applicable:
            key = f"{rule.name}:{client_ip}:{rule.window_seconds}"
            count, reset_in = self.store.hit(key, rule.window_seconds)
            if count > rule.max_requests:
                logger.warning("Rate limit %s exceeded by %s on %s", rule.name, client_ip, path)
                return error_response(
                    429,
                    "RATE_LIMIT_EXCEEDED",
                    "Too many requests, please try again later.",
                    details={"limit": rule.max_requests, "window_seconds": rule.window_seconds},
                    headers={"Retry-After": str(reset_in)},
                )

        return await call_next(request)
