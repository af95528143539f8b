import time
from typing import Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from campaign_queue.core.logger import get_logger

logger = get_logger(__name__)

MAIL_SENDER_API = "MailSender"


def get_api_rate_limits() -> Dict[str, Dict[str, int]]:
    """
    Get collaborator rate limits from application configuration.

    Returns:
        dict: per-API ``max_requests`` and ``period_seconds``
    """
    from campaign_queue.core.config import settings

    return {
        MAIL_SENDER_API: {
            'max_requests': settings.MAIL_RATE_LIMIT_REQUESTS,
            'period_seconds': settings.MAIL_RATE_LIMIT_PERIOD
        },
    }


class ApiIntegrationRateLimiter:
    """
    Fixed-window rate limiter shared by every worker process through Redis.

    The window counter is ``ratelimit:<api_name>``; it starts on the first
    request of a window and expires after ``period_seconds``. When Redis is
    unreachable requests are allowed, so an outage of the limiter never stops
    the queue.

    Example usage:
        from campaign_queue.core.config import get_redis_connection
        limiter = ApiIntegrationRateLimiter(get_redis_connection(), 'MailSender', max_requests=600, period_seconds=60)
        if not limiter.acquire():
            raise ServiceError(ServiceErrorCode.RATE_LIMIT, "Mail rate limit exceeded")
    """

    def __init__(self, redis_client: Redis, api_name: str, max_requests: int, period_seconds: int):
        self.redis = redis_client
        self.api_name = api_name
        self.max_requests = max_requests
        self.period_seconds = period_seconds
        self.key = f"ratelimit:{api_name}"

    @classmethod
    def for_api(cls, redis_client: Redis, api_name: str) -> "ApiIntegrationRateLimiter":
        limits = get_api_rate_limits()[api_name]
        return cls(redis_client, api_name, limits['max_requests'], limits['period_seconds'])

    def is_allowed(self) -> bool:
        """True if a request would currently be allowed. Does not consume a slot."""
        try:
            current = self.redis.get(self.key)
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable for {self.api_name}: {e}", extra={"component": "rate_limiter"})
            return True
        if current is None:
            return True
        return int(current) < self.max_requests

    def acquire(self, block: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Consume one slot in the current window.

        Args:
            block: Wait for the next window instead of returning False
            timeout: Maximum seconds to wait when blocking

        Returns:
            bool: True if a slot was acquired
        """
        start = time.time()
        while True:
            try:
                pipe = self.redis.pipeline()
                pipe.incr(self.key, 1)
                pipe.ttl(self.key)
                count, ttl = pipe.execute()
                if ttl is None or ttl < 0:
                    self.redis.expire(self.key, self.period_seconds)
            except RedisError as e:
                logger.warning(f"Rate limiter unavailable for {self.api_name}: {e}", extra={"component": "rate_limiter"})
                return True

            if count <= self.max_requests:
                return True
            if not block:
                return False
            if timeout is not None and (time.time() - start) > timeout:
                return False
            time.sleep(min(1, self.period_seconds))

    def get_remaining(self) -> int:
        """Requests left in the current window (max_requests when Redis is down)."""
        try:
            current = self.redis.get(self.key)
        except RedisError:
            return self.max_requests
        if current is None:
            return self.max_requests
        return max(0, self.max_requests - int(current))

    def reset(self) -> None:
        self.redis.delete(self.key)
