import logging
import threading
import time

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window attempt counter keyed by caller (IP, email, ...)."""

    def __init__(self, redis_url: str | None = None, key_prefix: str = "spendwise") -> None:
        self._windows: dict[str, tuple[int, int]] = {}
        self._lock = threading.Lock()
        self._key_prefix = key_prefix
        self._redis: Redis | None = None
        if redis_url:
            try:
                client = Redis.from_url(redis_url, decode_responses=True)
                client.ping()
                self._redis = client
            except RedisError as exc:
                logger.warning("Redis unavailable for rate limiting, using local memory: %s", exc)

    def _redis_key(self, key: str, window_id: int) -> str:
        return f"{self._key_prefix}:ratelimit:{key}:{window_id}"

    def _count_redis(self, key: str, window_id: int, window_seconds: int) -> int | None:
        if self._redis is None:
            return None
        redis_key = self._redis_key(key, window_id)
        try:
            pipe = self._redis.pipeline()
            pipe.incr(redis_key)
            pipe.expire(redis_key, window_seconds + 1)
            count, _ = pipe.execute()
            return int(count)
        except RedisError:
            return None

    def exceeded(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record one attempt and report whether it goes over ``limit``."""
        limit = max(1, int(limit))
        window_seconds = max(1, int(window_seconds))
        window_id = int(time.time()) // window_seconds

        count = self._count_redis(key, window_id, window_seconds)
        if count is not None:
            return count > limit

        with self._lock:
            current_window, current_count = self._windows.get(key, (window_id, 0))
            if current_window != window_id:
                current_count = 0
            current_count += 1
            self._windows[key] = (window_id, current_count)
            return current_count > limit
