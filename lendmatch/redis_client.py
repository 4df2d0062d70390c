"""
Redis connection setup using redis-py async client.

Provides a shared redis instance used for the lender
classification cache.  REDIS_SSL switches a ``redis://`` URL
to ``rediss://`` (TLS).
"""

import redis.asyncio as aioredis

from lendmatch.config import settings


def _redis_url() -> str:
    url = settings.REDIS_URL
    if settings.REDIS_SSL and url.startswith("redis://"):
        return "rediss://" + url[len("redis://"):]
    return url


redis = aioredis.from_url(_redis_url(), decode_responses=True)
