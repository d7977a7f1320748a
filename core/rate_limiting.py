"""
Redis-based rate limiting for write-heavy API endpoints.
Fixed window counter keyed on the authenticated user (or client IP);
rejected requests are rendered as 429 by the API exception handler.
"""
import logging

import redis
from django.conf import settings
from rest_framework import exceptions

from core.cache import redis_client

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


def get_client_key(request):
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return f"user:{user.pk}"
    return f"ip:{get_client_ip(request)}"


def rate_limit_enabled():
    return getattr(settings, 'RATE_LIMIT_ENABLED', True) and redis_client is not None


class RateLimitMixin:
    """
    Mixin for DRF class-based views. Only the methods listed in
    `rate_limit_methods` are counted; reads pass through.

    Counting happens in `initial()`, after DRF has authenticated the
    request, so every authentication scheme gets a per-user bucket.

    Usage:
        class OrderListCreateView(RateLimitMixin, APIView):
            rate_limit_max_requests = 10
            rate_limit_window_seconds = 60
    """
    rate_limit_max_requests = 20
    rate_limit_window_seconds = 60
    rate_limit_methods = ('POST', 'PUT', 'PATCH')

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        self.rate_limit_state = None
        if request.method not in self.rate_limit_methods or not rate_limit_enabled():
            return

        try:
            key = f"rate_limit:{self.__class__.__name__}:{get_client_key(request)}"

            current_count = redis_client.incr(key)
            if current_count == 1:
                redis_client.expire(key, self.rate_limit_window_seconds)

            ttl = redis_client.ttl(key)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return

        self.rate_limit_state = (current_count, ttl)
        if current_count > self.rate_limit_max_requests:
            logger.warning(f"Rate limit hit on {self.__class__.__name__} for {get_client_key(request)}")
            raise exceptions.Throttled(
                wait=ttl,
                detail=(
                    f'Maximum {self.rate_limit_max_requests} requests per '
                    f'{self.rate_limit_window_seconds} seconds allowed.'
                )
            )

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        state = getattr(self, 'rate_limit_state', None)
        if state is not None:
            current_count, ttl = state
            response['X-RateLimit-Limit'] = str(self.rate_limit_max_requests)
            response['X-RateLimit-Remaining'] = str(max(0, self.rate_limit_max_requests - current_count))
            response['X-RateLimit-Reset'] = str(ttl)
        return response
