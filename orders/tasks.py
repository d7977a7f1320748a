"""
Celery tasks for order event fan-out.

Tasks:
    - broadcast_order_event: publish a lifecycle event to the Redis channel
      consumed by the socket and push-notification services
"""
import json
import logging

import redis
from celery import shared_task
from django.conf import settings

from core.exceptions import GatewayError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(GatewayError,),
    retry_backoff=True
)
def broadcast_order_event(self, event: dict):
    """
    Publish a lifecycle event.

    Subscribers (socket broadcaster, notification fan-out) listen on the
    channel named by ORDERS['EVENT_CHANNEL'].

    Returns:
        Dict with publish details
    """
    from core.cache import redis_client

    channel = settings.ORDERS['EVENT_CHANNEL']

    if redis_client is None:
        logger.warning(
            f"Redis unavailable; dropping {event.get('triggerType')} event "
            f"for order {event.get('orderNumber')}"
        )
        return {'status': 'skipped', 'order_id': event.get('orderId')}

    try:
        receivers = redis_client.publish(channel, json.dumps(event))
    except redis.RedisError as e:
        logger.error(f"Publishing event for order {event.get('orderNumber')} failed: {e}")
        raise GatewayError(f"Event publish failed: {e}")

    logger.info(
        f"[CELERY] Order {event.get('orderNumber')}: {event.get('previousStatus')} -> "
        f"{event.get('newStatus')} ({event.get('triggerType')}) delivered to {receivers} subscriber(s)"
    )

    return {
        'status': 'success',
        'order_id': event.get('orderId'),
        'receivers': receivers
    }
