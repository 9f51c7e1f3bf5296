"""Rate limiting service using Redis."""

import hashlib
import logging
from typing import Optional

import redis.asyncio as redis
from fastapi import Request

from app.config import settings
from app.core.errors import RateLimitError
from app.core.metrics import track_rate_limit_hit
from app.utils.logging_utils import redact_ip

logger = logging.getLogger(__name__)


def client_identifier(request: Request) -> str:
    """
    Best-effort client IP.

    Uses the rightmost X-Forwarded-For entry: that one is appended by our own
    proxy, the leftmost entries are client-supplied.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
        if ips:
            return ips[-1]
    return request.client.host if request.client else "unknown"


class RateLimitService:
    """Fixed-window request counter per client and path, stored in Redis."""

    def __init__(self, redis_url: str = settings.REDIS_URL):
        self.redis_url = redis_url
        self.redis_client: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )
        return self.redis_client

    def _get_rate_limit_key(self, identifier: str, endpoint: str) -> str:
        # Hash to normalize key length; not used for security
        hash_key = hashlib.md5(f"{identifier}:{endpoint}".encode(), usedforsecurity=False).hexdigest()  # nosec B324
        return f"rate_limit:{hash_key}"

    async def check_rate_limit(
        self,
        request: Request,
        max_requests: int = settings.TOKEN_ENDPOINT_MAX_REQUESTS,
        window_seconds: int = settings.TOKEN_ENDPOINT_WINDOW_SECONDS,
        identifier: Optional[str] = None,
    ) -> None:
        """
        Count this request against the caller's window.

        Skipped in development and when no client address is known. Fails
        open when Redis is unavailable.

        Raises:
            RateLimitError: the window's budget is spent
        """
        identifier = identifier or client_identifier(request)
        if identifier == "unknown" or settings.ENVIRONMENT == "development":
            return

        endpoint = request.url.path
        key = self._get_rate_limit_key(identifier, endpoint)

        try:
            redis_client = await self.get_redis()
            current = await redis_client.get(key)

            if current is None:
                await redis_client.setex(key, window_seconds, 1)
                return

            if int(current) >= max_requests:
                ttl = await redis_client.ttl(key)
                track_rate_limit_hit(endpoint)
                logger.warning(
                    "Rate limit exceeded | ip=%s | path=%s", redact_ip(identifier), endpoint
                )
                raise RateLimitError(retry_after=max(ttl, 1))

            await redis_client.incr(key)

        except RateLimitError:
            raise
        except (redis.RedisError, OSError) as e:
            # Fail-open: an unavailable Redis must not take the token endpoints down
            logger.warning("Rate limit check failed (fail-open): %s", e)


# Singleton instance
_rate_limit_service = None


def get_rate_limit_service() -> RateLimitService:
    """Get or create rate limit service singleton."""
    global _rate_limit_service
    if _rate_limit_service is None:
        _rate_limit_service = RateLimitService()
    return _rate_limit_service

