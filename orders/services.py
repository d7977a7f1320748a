"""
Order Service Layer - creation, status transitions, assignment and reads.

Every mutation follows the same shape:
1. Load the order and check the lifecycle rules for the acting role
2. Write with a conditional update guarded by the state that was checked
3. Append the audit entry in the same transaction
4. Emit the lifecycle event after commit (fire-and-forget)
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from accounts.roles import Actor
from business.models import BusinessSettings, Offer
from core.exceptions import AuthorizationError, NotFoundError, StateError, ValidationError
from . import events, lifecycle
from .models import Order, UNASSIGNED
from .pricing import ZERO, build_items, normalize_discount, price_order, round2
from .repository import OrderRepository

logger = logging.getLogger(__name__)

repository = OrderRepository()

ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code')


def engine_setting(name):
    return settings.ORDERS[name]


def guard(order: Order) -> Dict:
    """Prior state a mutation is conditioned on."""
    return {
        'status': order.status,
        'payment_status': order.payment_status,
        'delivery_agent_id': order.delivery_agent_id,
    }


def format_address(address: Dict) -> str:
    missing = [f for f in ADDRESS_FIELDS if not (address or {}).get(f)]
    if missing:
        raise ValidationError(f"Address is missing: {', '.join(missing)}")
    return f"{address['street']}, {address['city']}, {address['state']} {address['zip_code']}"


def requested_discount_code(discount_code: Optional[str], discounts=None) -> Optional[str]:
    """
    Resolve the discount code a client asked for.

    Older clients send `discounts` as a bare amount or an object with
    amount/code; only the code is honoured, the server prices the discount.
    """
    if discounts is None:
        return discount_code
    requested = normalize_discount(discounts)
    if requested.code:
        if discount_code and discount_code.strip().upper() != requested.code.strip().upper():
            raise ValidationError("Conflicting discount codes in request")
        return discount_code or requested.code
    if requested.amount > 0 and not discount_code:
        raise ValidationError("A discount must be claimed with a discount code")
    return discount_code


def create_order(
    actor: Actor,
    items: List[Dict],
    address: Dict,
    payment_method: str,
    discount_code: Optional[str] = None,
    notes: str = '',
    payment_details: Optional[Dict] = None,
    customer_phone: str = '',
    discounts=None,
) -> Order:
    """
    Price and persist a new order in Pending status.

    The business settings are read once here and frozen into the order.

    Raises:
        ValidationError: empty/invalid items, bad address, unknown payment
            method, subtotal below minimum, invalid discount code, or a
            legacy `discounts` value carrying an amount without a code
    """
    if payment_method not in Order.PaymentMethod.values:
        raise ValidationError(f"Unsupported payment method: {payment_method}")

    discount_code = requested_discount_code(discount_code, discounts)
    item_inputs = build_items(items)
    full_address = format_address(address)

    customer = get_user_model().objects.filter(pk=actor.id).first()
    if customer is None:
        raise NotFoundError(f"Customer {actor.id} not found")

    snapshot = BusinessSettings.load().snapshot()
    discount_rule = Offer.resolve(discount_code) if discount_code else None

    breakdown = price_order(
        item_inputs,
        snapshot,
        discount_rule,
        enforce_minimum=engine_setting('ENFORCE_MINIMUM_ORDER_VALUE'),
        default_gst_percentage=Decimal(str(engine_setting('DEFAULT_GST_PERCENTAGE'))),
    )

    with transaction.atomic():
        if discount_rule is not None and not Offer.record_usage(discount_rule.code):
            raise ValidationError(f"Discount code {discount_rule.code} has reached its usage limit")

        order = Order(
            customer=customer,
            customer_name=customer.display_name,
            customer_phone=customer.phone or customer_phone,
            address=dict(address),
            full_address=full_address,
            notes=notes or '',
            payment_method=payment_method,
            payment_details=payment_details or {},
            subtotal=breakdown.subtotal,
            tax=breakdown.tax,
            tax_percentage=breakdown.tax_percentage,
            delivery_fee=breakdown.delivery_fee,
            discount_amount=breakdown.discount.amount,
            discount_percentage=breakdown.discount.percentage,
            discount_code=breakdown.discount.code or '',
            discount_description=breakdown.discount.description or '',
            total=breakdown.total,
            applied_settings=snapshot.as_dict(),
        )
        order = repository.save(order, breakdown.items)
        events.emit_lifecycle_event(order, None, events.NEW_ORDER, actor)

    logger.info(
        f"Order {order.order_number} placed: {len(breakdown.items)} items, "
        f"subtotal {breakdown.subtotal}, total {breakdown.total}"
    )
    return order


def check_read_access(order: Order, actor: Actor) -> None:
    if actor.is_admin:
        return
    if actor.is_customer and order.customer_id == actor.id:
        return
    if actor.is_delivery_agent and order.delivery_agent_id == actor.id:
        return
    raise AuthorizationError("Not authorized to view this order")


def get_order(order_id, actor: Actor) -> Order:
    order = repository.find_by_id(order_id)
    check_read_access(order, actor)
    return order


def list_orders(
    actor: Actor,
    filters: Optional[Dict] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    sort: str = '-created_at',
) -> Dict:
    """
    Role-scoped order listing. Customers see their own orders, delivery
    agents their assigned orders, admins everything.
    """
    filters = dict(filters or {})
    if actor.is_customer:
        filters['customer_id'] = actor.id
    elif actor.is_delivery_agent:
        filters['delivery_agent_id'] = actor.id
    elif not actor.is_admin:
        raise AuthorizationError(f"Role '{actor.role}' cannot list orders")

    return repository.find(
        filters,
        sort=sort,
        page=page,
        page_size=page_size or engine_setting('PAGE_SIZE'),
    )


def transition_status(order_id, actor: Actor, target_status: str, note: Optional[str] = None) -> Order:
    """
    Move an order to `target_status` under the role-gated lifecycle rules.

    Raises:
        NotFoundError, AuthorizationError, StateError
    """
    with transaction.atomic():
        order = repository.find_by_id(order_id)
        lifecycle.check_transition(order, actor, target_status)

        previous_status = order.status
        changes = {'status': target_status}
        if target_status == Order.Status.OUT_FOR_DELIVERY and order.estimated_delivery_time is None:
            changes['estimated_delivery_time'] = timezone.now() + timedelta(
                minutes=engine_setting('ESTIMATED_DELIVERY_MINUTES')
            )

        order = repository.update_if(order, guard(order), **changes)
        repository.append_history(order, target_status, note or lifecycle.default_note(target_status, actor))

        trigger = events.CANCELLED if target_status == Order.Status.CANCELLED else events.STATUS_CHANGE
        events.emit_lifecycle_event(order, previous_status, trigger, actor)

    logger.info(
        f"Order {order.order_number} status updated {previous_status} -> {target_status} "
        f"by {actor.label} #{actor.id}"
    )
    return order


def cancel_order(order_id, actor: Actor, note: Optional[str] = None) -> Order:
    return transition_status(
        order_id,
        actor,
        Order.Status.CANCELLED,
        note or f"Cancelled by {actor.label}",
    )


def rate_order(order_id, actor: Actor, rating, comment: str = '') -> Order:
    """
    Customer rating of a delivered order; allowed once.

    Raises:
        ValidationError: rating outside 1-5
        AuthorizationError: not the order's customer
        StateError: order not delivered, or already rated
    """
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    with transaction.atomic():
        order = repository.find_by_id(order_id)
        if not actor.is_customer or order.customer_id != actor.id:
            raise AuthorizationError("Only the ordering customer can rate this order")
        if order.status != Order.Status.DELIVERED:
            raise StateError("Only delivered orders can be rated")
        if order.rating is not None:
            raise StateError("Order has already been rated")

        expected = dict(guard(order), rating__isnull=True)
        order = repository.update_if(order, expected, rating=rating, review_comment=comment or '')
        repository.append_history(order, order.status, f"Order rated {rating}/5 stars by customer")
        events.emit_lifecycle_event(order, order.status, events.RATED, actor)

    logger.info(f"Order {order.order_number} rated {rating}/5")
    return order


def assign_delivery_agent(order_id, actor: Actor, agent_id=None) -> Order:
    """
    Assign (or with agent_id=None, unassign) the delivery agent. Admin only.

    Raises:
        AuthorizationError: caller is not an admin
        NotFoundError: order or agent missing
        ValidationError: user is not a delivery agent
        StateError: agent offline/unapproved, or order already finished
    """
    if not actor.is_admin:
        raise AuthorizationError("Only admins can assign delivery agents")

    with transaction.atomic():
        order = repository.find_by_id(order_id)
        if order.is_terminal:
            raise StateError(f"Order {order.order_number} is {order.status}; assignment is closed")

        if agent_id is None:
            agent = None
            agent_name = UNASSIGNED
            note = 'Delivery agent unassigned'
            trigger = events.AGENT_UNASSIGNED
        else:
            agent = get_user_model().objects.filter(pk=agent_id).first()
            if agent is None:
                raise NotFoundError(f"Delivery agent {agent_id} not found")
            if not agent.is_delivery_agent:
                raise ValidationError(f"User {agent_id} is not a delivery agent")
            if not agent.is_approved:
                raise StateError("Delivery agent is not approved")
            if not agent.is_online:
                raise StateError("Delivery agent is currently offline")
            agent_name = agent.display_name
            note = f"Assigned to {agent_name}"
            trigger = events.AGENT_ASSIGNED

        order = repository.update_if(
            order,
            guard(order),
            delivery_agent=agent,
            delivery_agent_name=agent_name,
        )
        repository.append_history(order, order.status, note)
        events.emit_lifecycle_event(order, order.status, trigger, actor)

    logger.info(f"Order {order.order_number}: {note}")
    return order


def order_stats(actor: Actor) -> Dict:
    """Aggregate order counts and delivered revenue for the admin dashboard."""
    if not actor.is_admin:
        raise AuthorizationError("Only admins can view order statistics")

    Status = Order.Status
    stats = Order.objects.aggregate(
        total_orders=Count('id'),
        pending_orders=Count('id', filter=Q(status=Status.PENDING)),
        preparing_orders=Count('id', filter=Q(status=Status.PREPARING)),
        out_for_delivery_orders=Count('id', filter=Q(status=Status.OUT_FOR_DELIVERY)),
        delivered_orders=Count('id', filter=Q(status=Status.DELIVERED)),
        cancelled_orders=Count('id', filter=Q(status=Status.CANCELLED)),
        unpaid_orders=Count(
            'id',
            filter=~Q(payment_status=Order.PaymentStatus.COMPLETED) & ~Q(status=Status.CANCELLED)
        ),
        delivered_revenue=Sum('total', filter=Q(status=Status.DELIVERED)),
    )
    stats['delivered_revenue'] = str(round2(stats['delivered_revenue'] or ZERO))
    return stats
