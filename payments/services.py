"""
Payment Reconciliation Service.

`reconcile_payment` is the single write path for an order's payment state:
1. Validate the request and the caller's role against the order
2. Verify Online completions with the payment gateway
3. Conditionally update the order (guarded by the persisted state it read)
4. Post a ledger Transaction only when this call moved the payment to
   Completed, keyed by the order's settlement counter
5. Append the audit note and emit the lifecycle event after commit

A reconciliation against an order whose payment is already Completed still
applies field-level updates but never posts a second ledger entry, and only
an admin may move a Completed payment to another status.
"""
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from accounts.roles import Actor
from business.models import BusinessSettings
from core.exceptions import AuthorizationError, NotFoundError, StateError, ValidationError
from orders import events, lifecycle
from orders.models import Order
from orders.pricing import ZERO, round2
from orders.services import guard, repository
from .gateway import verify_payment
from .models import Transaction

logger = logging.getLogger(__name__)

PaymentMethod = Order.PaymentMethod
PaymentStatus = Order.PaymentStatus

# Methods a delivery agent settles by hand at the door.
HAND_SETTLED_METHODS = (PaymentMethod.CASH_ON_DELIVERY, PaymentMethod.UPI)
CUSTOMER_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.FAILED)
GATEWAY_FIELDS = ('gateway_order_id', 'gateway_payment_id')


@dataclass
class PaymentResult:
    order: Order
    transaction: Optional[Transaction] = None


def _validate_request(payment_status, payment_method, status, create_transaction):
    if payment_status is not None and payment_status not in PaymentStatus.values:
        raise ValidationError(f"Unknown payment status: {payment_status}")
    if payment_method is not None and payment_method not in PaymentMethod.values:
        raise ValidationError(f"Unsupported payment method: {payment_method}")
    if status is not None and status not in Order.Status.values:
        raise ValidationError(f"Unknown order status: {status}")

    if create_transaction:
        if payment_status is None:
            payment_status = PaymentStatus.COMPLETED
        elif payment_status != PaymentStatus.COMPLETED:
            raise ValidationError("A transaction can only be recorded for a completed payment")
    return payment_status


def check_payment_access(
    order: Order,
    actor: Actor,
    payment_status: Optional[str],
    payment_method: Optional[str],
    status: Optional[str],
) -> None:
    """
    Raises:
        AuthorizationError: the caller may not make this payment change
    """
    if actor.is_admin:
        return

    if actor.is_delivery_agent:
        if order.delivery_agent_id != actor.id:
            raise AuthorizationError("Not authorized - this order is not assigned to you")
        if payment_status == PaymentStatus.REFUNDED:
            raise AuthorizationError("Only admins can refund payments")
    elif actor.is_customer:
        if order.customer_id != actor.id:
            raise AuthorizationError("Not authorized to update this order")
        if order.payment_method != PaymentMethod.ONLINE:
            raise AuthorizationError("Customers can only update online payments")
        if payment_method is not None and payment_method != order.payment_method:
            raise AuthorizationError("Customers cannot change the payment method")
        if status is not None:
            raise AuthorizationError("Customers cannot change the order status with a payment update")
        if payment_status is not None and payment_status not in CUSTOMER_PAYMENT_STATUSES:
            raise AuthorizationError(f"Customers cannot set payment status to {payment_status}")
    else:
        raise AuthorizationError(f"Role '{actor.role}' cannot update payments")

    # A settled payment only leaves Completed through an admin.
    if (
        order.payment_status == PaymentStatus.COMPLETED
        and payment_status is not None
        and payment_status != PaymentStatus.COMPLETED
    ):
        raise AuthorizationError("Only admins can change a completed payment")


def _ledger_wanted(actor: Actor, create_transaction: bool, payment_status: str, payment_method: str) -> bool:
    if create_transaction:
        return True
    return (
        actor.is_delivery_agent
        and payment_status == PaymentStatus.COMPLETED
        and payment_method in HAND_SETTLED_METHODS
    )


def _verify_online_completion(details: Dict) -> None:
    missing = [name for name in GATEWAY_FIELDS if not details.get(name)]
    if missing:
        raise ValidationError(f"Online payment details are missing: {', '.join(missing)}")
    verify_payment(details)


def _payment_note(actor: Actor, payment_status: str, status: Optional[str]) -> str:
    note = f"Payment status updated to {payment_status} by {actor.label}"
    if status:
        note += f" and status updated to {status}"
    return note


def record_transaction(order: Order, actor: Actor, upi: Optional[Dict] = None, note: Optional[str] = None) -> Transaction:
    """
    Post the ledger entry for the order's current settlement.
    Must run inside the transaction that completed the payment.
    """
    upi = upi or {}
    details = order.payment_details or {}
    fields = {}

    if order.payment_method in HAND_SETTLED_METHODS or upi:
        business = BusinessSettings.load()
        fields.update(
            upi_id=upi.get('upi_id') or business.upi_id,
            upi_merchant_name=upi.get('merchant_name') or business.merchant_name,
            upi_merchant_code=upi.get('merchant_code') or business.merchant_code,
            upi_reference=upi.get('reference') or order.order_number,
        )
    if order.payment_method == PaymentMethod.ONLINE:
        fields.update(
            gateway_order_id=details.get('gateway_order_id') or '',
            gateway_payment_id=details.get('gateway_payment_id') or '',
            gateway_signature=details.get('gateway_signature') or '',
        )

    try:
        with transaction.atomic():
            entry = Transaction.objects.create(
                order=order,
                order_number=order.order_number,
                settlement=order.settlement_count,
                amount=order.total,
                payment_method=order.payment_method,
                status=Transaction.Status.COMPLETED,
                confirmed_by_id=actor.id,
                confirmed_by_name=actor.name or actor.label,
                confirmed_by_role=actor.role,
                customer_id=order.customer_id,
                customer_name=order.customer_name,
                notes=note or f"Payment confirmed by {actor.label}",
                **fields
            )
    except IntegrityError:
        raise StateError(f"Settlement {order.settlement_count} of order {order.order_number} is already recorded")

    logger.info(
        f"Recorded transaction #{entry.pk} for order {order.order_number}: "
        f"{entry.amount} via {entry.payment_method}"
    )
    return entry


def reconcile_payment(
    order_id,
    actor: Actor,
    payment_status: Optional[str] = None,
    payment_method: Optional[str] = None,
    payment_details: Optional[Dict] = None,
    status: Optional[str] = None,
    note: Optional[str] = None,
    create_transaction: bool = False,
    upi: Optional[Dict] = None,
) -> PaymentResult:
    """
    Update an order's payment state and, when policy requires, post a ledger entry.

    Raises:
        NotFoundError: unknown order
        AuthorizationError: role or ownership mismatch
        ValidationError: unknown values, missing gateway identifiers, nothing to update
        StateError: status change not allowed, or the order changed concurrently
        GatewayError: the gateway did not verify an Online payment
    """
    payment_status = _validate_request(payment_status, payment_method, status, create_transaction)
    if payment_status is None and payment_method is None and not payment_details and status is None:
        raise ValidationError("Nothing to update")

    with transaction.atomic():
        order = repository.find_by_id(order_id)
        check_payment_access(order, actor, payment_status, payment_method, status)

        new_method = payment_method or order.payment_method
        new_payment_status = payment_status or order.payment_status
        completing = (
            new_payment_status == PaymentStatus.COMPLETED
            and order.payment_status != PaymentStatus.COMPLETED
        )

        details = dict(order.payment_details or {})
        if payment_details:
            details.update(payment_details)
            details['updated_at'] = timezone.now().isoformat()

        if completing and new_method == PaymentMethod.ONLINE and not actor.is_admin:
            _verify_online_completion(details)

        if status is not None:
            lifecycle.check_transition(order, actor, status, payment_status=new_payment_status)

        changes = {}
        if payment_method is not None:
            changes['payment_method'] = payment_method
        if payment_status is not None:
            changes['payment_status'] = payment_status
        if payment_details:
            changes['payment_details'] = details
        if status is not None:
            changes['status'] = status
            if status == Order.Status.OUT_FOR_DELIVERY and order.estimated_delivery_time is None:
                changes['estimated_delivery_time'] = timezone.now() + timedelta(
                    minutes=settings.ORDERS['ESTIMATED_DELIVERY_MINUTES']
                )
        if completing:
            changes['settlement_count'] = F('settlement_count') + 1

        previous_status = order.status
        order = repository.update_if(order, guard(order), **changes)
        repository.append_history(order, order.status, note or _payment_note(actor, new_payment_status, status))

        entry = None
        if _ledger_wanted(actor, create_transaction, new_payment_status, new_method):
            if completing:
                entry = record_transaction(order, actor, upi, note)
            else:
                logger.info(f"Order {order.order_number} payment already settled; no new ledger entry")

        if status is None:
            trigger = events.PAYMENT_UPDATE
        elif status == Order.Status.CANCELLED:
            trigger = events.CANCELLED
        else:
            trigger = events.STATUS_CHANGE
        events.emit_lifecycle_event(order, previous_status, trigger, actor)

    logger.info(
        f"Order {order.order_number} payment {order.payment_status} ({order.payment_method}) "
        f"updated by {actor.label} #{actor.id}"
    )
    return PaymentResult(order=order, transaction=entry)


def _paginate(queryset, page: int, page_size: int) -> Dict:
    page = max(int(page or 1), 1)
    total = queryset.count()
    offset = (page - 1) * page_size
    return {
        'transactions': list(queryset[offset:offset + page_size]),
        'page': page,
        'pages': math.ceil(total / page_size) if total else 0,
        'total': total,
    }


def list_transactions(actor: Actor, page: int = 1, page_size: Optional[int] = None) -> Dict:
    """Admins see the whole ledger, delivery agents the entries they confirmed."""
    queryset = Transaction.objects.select_related('order')
    if actor.is_delivery_agent:
        queryset = queryset.filter(confirmed_by_id=actor.id)
    elif not actor.is_admin:
        raise AuthorizationError("Not authorized to view transactions")
    return _paginate(queryset, page, page_size or settings.ORDERS['PAGE_SIZE'])


def get_transaction(pk, actor: Actor) -> Transaction:
    try:
        entry = Transaction.objects.select_related('order').get(pk=pk)
    except (Transaction.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Transaction {pk} not found")

    if actor.is_admin:
        return entry
    if actor.is_delivery_agent and entry.confirmed_by_id == actor.id:
        return entry
    if actor.is_customer and entry.customer_id == actor.id:
        return entry
    raise AuthorizationError("Not authorized to view this transaction")


def transactions_in_range(start, end) -> Dict:
    """Ledger entries with transaction_date in [start, end] and their total amount."""
    if start is None or end is None:
        raise ValidationError("Both start and end dates are required")
    if start > end:
        raise ValidationError("start must not be after end")

    queryset = Transaction.objects.filter(transaction_date__gte=start, transaction_date__lte=end)
    total = round2(queryset.aggregate(total=Sum('amount'))['total'] or ZERO)
    return {
        'transactions': list(queryset.select_related('order')),
        'count': queryset.count(),
        'total_amount': total,
    }
