"""
Lifecycle event sink.

Events are dispatched only after the surrounding transaction commits and are
fire-and-forget: a failure to queue or publish is logged and never affects
the order mutation that produced it.

Event shape:
    {orderId, orderNumber, previousStatus, newStatus, paymentStatus,
     triggerType, actor: {id, role}, occurredAt}
"""
import logging
from typing import Optional

from django.db import transaction
from django.utils import timezone

from accounts.roles import Actor

logger = logging.getLogger(__name__)

NEW_ORDER = 'new_order'
STATUS_CHANGE = 'status_change'
CANCELLED = 'cancelled'
RATED = 'rated'
PAYMENT_UPDATE = 'payment_update'
AGENT_ASSIGNED = 'agent_assigned'
AGENT_UNASSIGNED = 'agent_unassigned'


def build_event(order, previous_status: Optional[str], trigger_type: str, actor: Actor) -> dict:
    return {
        'orderId': order.pk,
        'orderNumber': order.order_number,
        'previousStatus': previous_status,
        'newStatus': order.status,
        'paymentStatus': order.payment_status,
        'deliveryAgentId': order.delivery_agent_id,
        'customerId': order.customer_id,
        'triggerType': trigger_type,
        'actor': actor.as_dict(),
        'occurredAt': timezone.now().isoformat(),
    }


def dispatch_event(event: dict) -> None:
    try:
        from .tasks import broadcast_order_event
        broadcast_order_event.delay(event)
        logger.info(f"Queued {event['triggerType']} event for order {event['orderNumber']}")
    except Exception as e:
        # Never fail the committed order mutation because of the sink.
        logger.error(f"Failed to queue {event['triggerType']} event for order {event['orderNumber']}: {e}")


def emit_lifecycle_event(order, previous_status: Optional[str], trigger_type: str, actor: Actor) -> dict:
    event = build_event(order, previous_status, trigger_type, actor)
    transaction.on_commit(lambda: dispatch_event(event))
    return event
