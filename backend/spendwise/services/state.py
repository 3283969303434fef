from spendwise.core.cache import SummaryCache
from spendwise.core.config import settings
from spendwise.core.rate_limit import RateLimiter

summary_cache = SummaryCache(redis_url=settings.redis_url, key_prefix=settings.redis_prefix)
rate_limiter = RateLimiter(redis_url=settings.redis_url, key_prefix=settings.redis_prefix)
