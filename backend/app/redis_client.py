# backend/app/redis_client.py
"""
Shared Redis client.

Redis is optional here: it only carries the cross-process invalidation
broadcast. `redis_client` is None when REDIS_URL is not configured.
"""

from redis import Redis

from .config import settings

redis_client: Redis | None = (
    Redis.from_url(settings.redis_url, decode_responses=True)
    if settings.redis_url
    else None
)
