"""
TRANSACTION LEDGER

One row per confirmed settlement of an order's payment.

Guarantees:
- Immutable once created (no updates, no deletes)
- At most one entry per (order, settlement); `settlement` is the order's
  settlement_count at the moment its payment reached Completed, so retries
  and duplicate confirmations cannot post twice
"""
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class Transaction(models.Model):

    class Method(models.TextChoices):
        CASH_ON_DELIVERY = 'Cash on Delivery', 'Cash on Delivery'
        UPI = 'UPI', 'UPI'
        ONLINE = 'Online', 'Online'

    class Status(models.TextChoices):
        PENDING = 'Pending', 'Pending'
        COMPLETED = 'Completed', 'Completed'
        FAILED = 'Failed', 'Failed'
        REFUNDED = 'Refunded', 'Refunded'

    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.PROTECT,
        related_name='transactions'
    )
    order_number = models.CharField(max_length=32, db_index=True)
    settlement = models.PositiveIntegerField(
        help_text="Order settlement_count this entry confirms"
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))]
    )
    payment_method = models.CharField(max_length=20, choices=Method.choices)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.COMPLETED,
        db_index=True
    )

    upi_id = models.CharField(max_length=100, blank=True, default='')
    upi_merchant_name = models.CharField(max_length=100, blank=True, default='')
    upi_merchant_code = models.CharField(max_length=50, blank=True, default='')
    upi_reference = models.CharField(max_length=100, blank=True, default='')

    gateway_order_id = models.CharField(max_length=100, blank=True, default='')
    gateway_payment_id = models.CharField(max_length=100, blank=True, default='')
    gateway_signature = models.CharField(max_length=255, blank=True, default='')

    confirmed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='confirmed_transactions'
    )
    confirmed_by_name = models.CharField(max_length=150)
    confirmed_by_role = models.CharField(max_length=20)
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payment_transactions'
    )
    customer_name = models.CharField(max_length=150)
    notes = models.TextField(blank=True, default='')

    transaction_date = models.DateTimeField(default=timezone.now, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Transaction'
        verbose_name_plural = 'Transactions'
        ordering = ['-transaction_date', '-id']
        constraints = [
            models.UniqueConstraint(fields=['order', 'settlement'], name='unique_order_settlement'),
        ]
        indexes = [
            models.Index(fields=['confirmed_by', 'transaction_date'], name='txn_confirmer_date_idx'),
        ]

    def __str__(self):
        return f"{self.order_number} #{self.settlement}: {self.amount} via {self.payment_method}"

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("Transaction records are immutable and cannot be modified")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Transaction records are immutable and cannot be deleted")
