# coursepay/services/lock_service.py
import redis

from coursepay.utils.settings import REDIS_URL
from coursepay.utils.logging import get_logger
from coursepay.utils.retry import redis_retry

logger = get_logger(__name__)

#compare-and-delete in one Lua script, so we never delete a lock someone else took over
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockService:
    """
    Named locks with a TTL, used as "already running" guards for jobs.
    The TTL frees the lock if the holder dies mid-run.
    """

    def __init__(self, url: str | None = None):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def acquire(self, name: str, owner: str, ttl: int) -> bool:
        key = f"lock:{name}"
        logger.info(f"Acquire lock {key} for {owner}")
        #SET lock:name owner NX EX ttl
        return bool(self.redis.set(name=key, value=owner, nx=True, ex=ttl))

    @redis_retry()
    def release(self, name: str, owner: str) -> bool:
        key = f"lock:{name}"
        logger.info(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)
