from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from typing import Callable, Protocol

import redis as redis_module

from app.config import settings
from app.services.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def hit(self, key: str) -> None:
        """Record one send for ``key`` or raise RateLimitError if over quota."""


class InMemoryRateLimiter:
    """Sliding-window counter per key, local to the process.

    Each key holds the timestamps of its sends inside the current window;
    timestamps older than the window are dropped on every hit and keys with
    nothing left are forgotten, so memory stays bounded by active senders.
    """

    def __init__(
        self,
        max_hits: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]

    def hit(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            self._prune(now)
            hits = self._hits.setdefault(key, deque())
            if len(hits) >= self.max_hits:
                retry_after = int(hits[0] + self.window_seconds - now) + 1
                raise RateLimitError(
                    "Rate limit exceeded. Please wait before sending more messages.",
                    retry_after=retry_after,
                )
            hits.append(now)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


class RedisRateLimiter:
    """Sliding window stored in a Redis sorted set per key.

    The key carries a TTL of one window, so idle senders expire on their own and
    the quota is shared by every worker pointing at the same Redis.
    """

    def __init__(
        self,
        client,
        max_hits: int = 10,
        window_seconds: float = 60.0,
        prefix: str = "storefront:ratelimit:messages",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = client
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._clock = clock

    def hit(self, key: str) -> None:
        """Record the hit first, then count; a hit that lands over quota is taken back.

        All writes run in one MULTI/EXEC, so concurrent workers each see a
        count that includes every hit recorded before theirs.
        """
        now = self._clock()
        redis_key = f"{self.prefix}:{key}"
        member = f"{now}:{uuid.uuid4().hex}"

        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
        pipe.zadd(redis_key, {member: now})
        pipe.zcard(redis_key)
        pipe.zrange(redis_key, 0, 0, withscores=True)
        pipe.expire(redis_key, int(self.window_seconds) + 1)
        _, _, count, oldest, _ = pipe.execute()

        if count > self.max_hits:
            self._redis.zrem(redis_key, member)
            oldest_score = oldest[0][1] if oldest else now
            raise RateLimitError(
                "Rate limit exceeded. Please wait before sending more messages.",
                retry_after=max(int(oldest_score + self.window_seconds - now) + 1, 1),
            )


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is not None:
        return _limiter
    if settings.RATE_LIMIT_BACKEND == "redis":
        _limiter = RedisRateLimiter(
            redis_module.from_url(settings.REDIS_URL),
            max_hits=settings.RATE_LIMIT_MAX,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    else:
        _limiter = InMemoryRateLimiter(
            max_hits=settings.RATE_LIMIT_MAX,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    logger.info("rate limiter backend: %s", type(_limiter).__name__)
    return _limiter
