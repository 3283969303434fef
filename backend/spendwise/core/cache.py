import json
import logging
import threading
import time
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class SummaryCache:
    """Per-user cache for aggregation results.

    Values must be JSON-serializable. Redis is used when configured and
    reachable; the in-process dict always mirrors writes so a Redis outage
    degrades to local caching.
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str = "spendwise") -> None:
        self._local: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._key_prefix = key_prefix
        self._redis: Redis | None = None
        if redis_url:
            try:
                client = Redis.from_url(redis_url, decode_responses=True)
                client.ping()
                self._redis = client
            except RedisError as exc:
                logger.warning("Redis unavailable for summary cache, using local memory: %s", exc)

    @staticmethod
    def user_key(user_id: int, name: str, *parts: Any) -> str:
        suffix = ":".join(str(p) for p in parts if p is not None and p != "")
        return f"user:{user_id}:{name}" + (f":{suffix}" if suffix else "")

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:summary:{key}"

    def get(self, key: str) -> Any | None:
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(key))
            except RedisError:
                raw = None
            else:
                # Redis is shared by every worker; a miss there means invalidated.
                if raw is None:
                    return None
                try:
                    return json.loads(raw)
                except ValueError:
                    return None

        with self._lock:
            entry = self._local.get(key)
            if entry is None:
                return None
            expires_at, raw = entry
            if time.monotonic() > expires_at:
                del self._local[key]
                return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        ttl = max(1, int(ttl))
        raw = json.dumps(value, separators=(",", ":"))
        if self._redis is not None:
            try:
                self._redis.setex(self._redis_key(key), ttl, raw)
            except RedisError:
                pass

        with self._lock:
            self._local[key] = (time.monotonic() + ttl, raw)

    def invalidate_user(self, user_id: int) -> None:
        prefix = f"user:{user_id}:"
        if self._redis is not None:
            try:
                pattern = self._redis_key(f"{prefix}*")
                cursor = 0
                while True:
                    cursor, keys = self._redis.scan(cursor=cursor, match=pattern, count=200)
                    if keys:
                        self._redis.delete(*keys)
                    if cursor == 0:
                        break
            except RedisError:
                pass

        with self._lock:
            for key in [k for k in self._local if k.startswith(prefix)]:
                del self._local[key]
