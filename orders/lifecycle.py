"""
ORDER LIFECYCLE DOMAIN RULES

Defines which status transitions are allowed and who may make them.

- No database writes
- No side effects
- Single source of truth for the role-gated transition table

    Actor           Allowed targets                  Precondition
    customer        Cancelled                        owns the order; Pending/Preparing
    delivery agent  Out for delivery, Delivered      assigned to the order;
                                                     COD must be paid before Delivered
    admin           any                              none

Terminal states (Delivered, Cancelled) admit no transition for anyone.
"""
from typing import Optional

from accounts.roles import Actor
from core.exceptions import AuthorizationError, StateError
from .models import Order

Status = Order.Status

TERMINAL_STATES = {
    Status.DELIVERED,
    Status.CANCELLED,
}

# Forward graph followed by customers and delivery agents.
ALLOWED_TRANSITIONS = {
    Status.PENDING: {Status.PREPARING, Status.OUT_FOR_DELIVERY, Status.CANCELLED},
    Status.PREPARING: {Status.OUT_FOR_DELIVERY, Status.CANCELLED},
    Status.OUT_FOR_DELIVERY: {Status.DELIVERED},
}

CUSTOMER_TARGETS = {Status.CANCELLED}
CUSTOMER_CANCELLABLE = {Status.PENDING, Status.PREPARING}
DELIVERY_TARGETS = {Status.OUT_FOR_DELIVERY, Status.DELIVERED}


def can_transition(*, from_status: str, to_status: str, override: bool = False) -> bool:
    if from_status in TERMINAL_STATES or from_status == to_status:
        return False
    if to_status not in Status.values:
        return False
    if override:
        return True
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def default_note(target_status: str, actor: Actor) -> str:
    return f"Status updated to {target_status} by {actor.label}"


def _check_customer(order: Order, actor: Actor, target_status: str):
    if target_status not in CUSTOMER_TARGETS:
        raise AuthorizationError("Customers can only cancel orders")
    if order.customer_id != actor.id:
        raise AuthorizationError("Not authorized to update this order")
    if order.status not in CUSTOMER_CANCELLABLE:
        raise StateError(f"Order cannot be cancelled at this stage ({order.status})")


def _check_delivery_agent(order: Order, actor: Actor, target_status: str, payment_status: str):
    if order.delivery_agent_id != actor.id:
        raise AuthorizationError("Not authorized - this order is not assigned to you")
    if target_status not in DELIVERY_TARGETS:
        raise StateError(
            "Delivery agents can only update to Out for delivery or Delivered status"
        )
    if (
        target_status == Status.DELIVERED
        and order.payment_method == Order.PaymentMethod.CASH_ON_DELIVERY
        and payment_status != Order.PaymentStatus.COMPLETED
    ):
        raise StateError("Payment must be completed before marking the order as delivered")


def check_transition(
    order: Order,
    actor: Actor,
    target_status: str,
    payment_status: Optional[str] = None,
) -> None:
    """
    Validate that `actor` may move `order` to `target_status`.

    `payment_status` overrides the order's stored payment status, for callers
    that update payment and status in one write.

    Raises:
        AuthorizationError: role or ownership mismatch
        StateError: disallowed target or unmet precondition
    """
    if payment_status is None:
        payment_status = order.payment_status

    if actor.is_customer:
        _check_customer(order, actor, target_status)
    elif actor.is_delivery_agent:
        _check_delivery_agent(order, actor, target_status, payment_status)
    elif not actor.is_admin:
        raise AuthorizationError(f"Role '{actor.role}' cannot update orders")

    if not can_transition(
        from_status=order.status,
        to_status=target_status,
        override=actor.is_admin,
    ):
        raise StateError(
            f"Order {order.order_number} cannot transition from "
            f"'{order.status}' to '{target_status}'"
        )
