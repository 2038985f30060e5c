"""
Shared dependencies for FastAPI endpoints.
"""

import logging

from redis.asyncio import Redis

from app.core.config import settings

logger = logging.getLogger(__name__)


# Redis client singleton
_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """
    Get or create the global Redis client.
    Used for rate-limit windows and verification codes.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0
        )
        logger.info("Redis client created")
    return _redis_client


async def close_redis():
    """Close the global Redis client."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
