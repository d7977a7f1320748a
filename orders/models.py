"""
Order Models - Order aggregate with items, status history and pricing.

Order Status Flow:
    Pending -> Preparing -> Out for delivery -> Delivered
    Pending / Preparing -> Cancelled

Delivered and Cancelled are terminal. Orders are never deleted.
"""
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

UNASSIGNED = 'Unassigned'


def generate_order_number() -> str:
    prefix = timezone.now().strftime('ORD%Y%m%d')
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


class Order(models.Model):
    """
    Customer purchase with computed pricing, delivery and payment state.

    Pricing fields and applied_settings are written once at creation.
    """

    class Status(models.TextChoices):
        PENDING = 'Pending', 'Pending'
        PREPARING = 'Preparing', 'Preparing'
        OUT_FOR_DELIVERY = 'Out for delivery', 'Out for delivery'
        DELIVERED = 'Delivered', 'Delivered'
        CANCELLED = 'Cancelled', 'Cancelled'

    class PaymentMethod(models.TextChoices):
        ONLINE = 'Online', 'Online'
        CASH_ON_DELIVERY = 'Cash on Delivery', 'Cash on Delivery'
        UPI = 'UPI', 'UPI'

    class PaymentStatus(models.TextChoices):
        PENDING = 'Pending', 'Pending'
        COMPLETED = 'Completed', 'Completed'
        FAILED = 'Failed', 'Failed'
        REFUNDED = 'Refunded', 'Refunded'

    TERMINAL_STATUSES = (Status.DELIVERED, Status.CANCELLED)

    PRICING_FIELDS = (
        'subtotal', 'tax', 'tax_percentage', 'delivery_fee',
        'discount_amount', 'discount_percentage', 'discount_code',
        'discount_description', 'total', 'applied_settings',
    )

    order_number = models.CharField(
        max_length=32,
        unique=True,
        default=generate_order_number,
        editable=False,
        help_text="Public order number"
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='orders'
    )
    customer_name = models.CharField(max_length=150, db_index=True)
    customer_phone = models.CharField(max_length=20, blank=True, default='', db_index=True)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    delivery_agent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_orders'
    )
    delivery_agent_name = models.CharField(max_length=150, default=UNASSIGNED)
    estimated_delivery_time = models.DateTimeField(null=True, blank=True)

    address = models.JSONField(default=dict, blank=True)
    full_address = models.CharField(max_length=500, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True
    )
    payment_details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    settlement_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of times payment reached Completed; keys the ledger"
    )

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    delivery_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    discount_code = models.CharField(max_length=40, blank=True, default='')
    discount_description = models.CharField(max_length=255, blank=True, default='')
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    applied_settings = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    rating = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    review_comment = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['customer', 'created_at'], name='order_customer_created_idx'),
            models.Index(fields=['delivery_agent', 'status'], name='order_agent_status_idx'),
            models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
        ]

    def __str__(self):
        return f"Order {self.order_number} - {self.customer_name} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items.all())

    @property
    def discount(self) -> dict:
        return {
            'amount': self.discount_amount,
            'percentage': self.discount_percentage,
            'code': self.discount_code or None,
            'description': self.discount_description or None,
        }


class OrderItem(models.Model):
    """
    Line of an order. Prices are captured at order time; modifiers hold the
    customizations, add-ons and toppings with their prices.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    menu_item_id = models.CharField(max_length=64, blank=True, default='')
    name = models.CharField(max_length=200, db_index=True)
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    unit_base_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Base price per unit before modifiers"
    )
    modifiers = models.JSONField(default=list, blank=True)
    special_instructions = models.TextField(blank=True, default='')
    line_total = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="(base price + modifiers) * quantity"
    )

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.name} @ {self.unit_price}"

    @property
    def unit_price(self) -> Decimal:
        return self.unit_base_price + sum(
            (Decimal(str(m.get('price') or 0)) for m in self.modifiers),
            Decimal('0.00')
        )


class StatusUpdate(models.Model):
    """Append-only audit trail entry. Never edited after creation."""
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='status_history'
    )
    status = models.CharField(max_length=20, choices=Order.Status.choices)
    note = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = 'Status Update'
        verbose_name_plural = 'Status Updates'
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.order_id}: {self.status} @ {self.created_at:%Y-%m-%d %H:%M:%S}"

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValueError("Status history entries are append-only")
        super().save(*args, **kwargs)
