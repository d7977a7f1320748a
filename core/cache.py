"""
Shared Redis client used for rate limiting and order event publishing.

The client is None when Redis is unreachable at start-up; callers degrade
gracefully in that case.
"""
import logging

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

try:
    redis_client = redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5
    )
    redis_client.ping()
except (redis.ConnectionError, redis.TimeoutError) as e:
    logger.warning(f"Redis connection failed: {e}. Rate limiting and event publishing are disabled.")
    redis_client = None
