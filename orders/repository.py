"""
Order persistence.

All mutations after creation go through `update_if`, a single conditional
UPDATE guarded by the prior values the caller based its decision on. If
another actor changed the order in between, zero rows match and the caller
gets a StateError instead of silently overwriting the other update.
"""
import logging
import math
from datetime import datetime, time, timedelta
from typing import Dict, Iterable, List, Optional

from django.db.models import Q, QuerySet
from django.utils import timezone

from core.exceptions import NotFoundError, StateError
from .models import Order, OrderItem, StatusUpdate
from .pricing import ItemInput

logger = logging.getLogger(__name__)

SORT_FIELDS = {'created_at', '-created_at', 'total', '-total', 'status', '-status'}


class OrderRepository:

    def base_queryset(self) -> QuerySet:
        return Order.objects.select_related('customer', 'delivery_agent').prefetch_related(
            'items', 'status_history'
        )

    def find_by_id(self, order_id) -> Order:
        try:
            return self.base_queryset().get(pk=order_id)
        except (Order.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Order {order_id} not found")

    def filter_queryset(self, filters: Optional[Dict] = None) -> QuerySet:
        """
        Supported filters:
            customer_id, delivery_agent_id, status, statuses, exclude_statuses,
            date (a date, whole day), date_from/date_to (datetimes),
            delivery_agent_name ('Unassigned' for none), search (order number,
            customer name or item name)
        """
        filters = filters or {}
        queryset = self.base_queryset()

        if filters.get('customer_id') is not None:
            queryset = queryset.filter(customer_id=filters['customer_id'])
        if filters.get('delivery_agent_id') is not None:
            queryset = queryset.filter(delivery_agent_id=filters['delivery_agent_id'])
        if filters.get('status'):
            queryset = queryset.filter(status=filters['status'])
        if filters.get('statuses'):
            queryset = queryset.filter(status__in=filters['statuses'])
        if filters.get('exclude_statuses'):
            queryset = queryset.exclude(status__in=filters['exclude_statuses'])
        if filters.get('date'):
            day = filters['date']
            start = timezone.make_aware(datetime.combine(day, time.min))
            queryset = queryset.filter(created_at__gte=start, created_at__lt=start + timedelta(days=1))
        if filters.get('date_from'):
            queryset = queryset.filter(created_at__gte=filters['date_from'])
        if filters.get('date_to'):
            queryset = queryset.filter(created_at__lte=filters['date_to'])
        if filters.get('delivery_agent_name'):
            queryset = queryset.filter(delivery_agent_name=filters['delivery_agent_name'])
        if filters.get('search'):
            term = filters['search']
            queryset = queryset.filter(
                Q(order_number__icontains=term)
                | Q(customer_name__icontains=term)
                | Q(items__name__icontains=term)
            ).distinct()

        return queryset

    def find(
        self,
        filters: Optional[Dict] = None,
        sort: str = '-created_at',
        page: int = 1,
        page_size: int = 10,
    ) -> Dict:
        """Paginated lookup: {'orders', 'page', 'pages', 'total'}."""
        if sort not in SORT_FIELDS:
            sort = '-created_at'
        page = max(int(page or 1), 1)
        page_size = max(int(page_size or 10), 1)

        queryset = self.filter_queryset(filters).order_by(sort, '-id')
        total = queryset.count()
        offset = (page - 1) * page_size
        return {
            'orders': list(queryset[offset:offset + page_size]),
            'page': page,
            'pages': math.ceil(total / page_size) if total else 0,
            'total': total,
        }

    def count(self, filters: Optional[Dict] = None) -> int:
        return self.filter_queryset(filters).count()

    def save(self, order: Order, items: Iterable[ItemInput]) -> Order:
        """
        Insert a new order with its items and the seeded history entry.
        Must run inside transaction.atomic().
        """
        if order.pk is not None:
            raise ValueError("save() only creates orders; use update_if() for changes")

        order.save()
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                menu_item_id=item.menu_item_id,
                name=item.name,
                quantity=item.quantity,
                unit_base_price=item.base_price,
                modifiers=[m.as_dict() for m in item.modifiers],
                special_instructions=item.special_instructions,
                line_total=item.line_total,
            )
            for item in items
        ])
        StatusUpdate.objects.create(
            order=order,
            status=order.status,
            note='Order created',
            created_at=order.created_at,
        )
        logger.info(f"Created order {order.order_number} for customer #{order.customer_id}")
        return self.find_by_id(order.pk)

    def update_if(self, order: Order, expected: Dict, **changes) -> Order:
        """
        Apply `changes` only if the stored row still matches `expected`.

        Raises:
            StateError: the order changed since it was read
            ValueError: an attempt to change write-once pricing fields
        """
        frozen = set(changes) & set(Order.PRICING_FIELDS)
        if frozen:
            raise ValueError(f"Pricing fields are immutable: {sorted(frozen)}")

        changes['updated_at'] = timezone.now()
        updated = Order.objects.filter(pk=order.pk, **expected).update(**changes)
        if updated != 1:
            logger.warning(f"Conditional update lost for order {order.order_number}: expected {expected}")
            raise StateError(
                f"Order {order.order_number} was modified concurrently; reload and retry"
            )
        order.refresh_from_db()
        return order

    def append_history(self, order: Order, status: str, note: str) -> StatusUpdate:
        """Append an audit entry; timestamps never go backwards."""
        now = timezone.now()
        last = StatusUpdate.objects.filter(order=order).order_by('-created_at', '-id').first()
        if last is not None and last.created_at > now:
            now = last.created_at
        return StatusUpdate.objects.create(order=order, status=status, note=note, created_at=now)

    def history(self, order: Order) -> List[StatusUpdate]:
        return list(StatusUpdate.objects.filter(order=order).order_by('created_at', 'id'))
