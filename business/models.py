"""
Business configuration consumed by the order engine.

Models:
    - BusinessSettings: single row of tax/delivery/minimum-order/UPI settings
    - Offer: discount codes redeemable at checkout

The order engine only reads these at order creation and freezes what it
read into the Order; nothing downstream consults them again.
"""
from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import ValidationError
from orders.pricing import DiscountRule, SettingsSnapshot


class BusinessSettings(models.Model):
    """
    Singleton settings row. Use BusinessSettings.load() rather than
    querying directly; it creates the row with defaults on first use.
    """
    gst_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('5.00'),
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('28'))],
        help_text="GST percentage applied to the subtotal"
    )
    apply_gst = models.BooleanField(default=True)
    delivery_fixed_charge = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('40.00'),
        validators=[MinValueValidator(Decimal('0'))]
    )
    free_delivery_threshold = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('500.00'),
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Subtotal at or above which delivery is free"
    )
    apply_delivery_to_all_orders = models.BooleanField(
        default=False,
        help_text="Charge delivery regardless of the free delivery threshold"
    )
    minimum_order_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('200.00'),
        validators=[MinValueValidator(Decimal('0'))]
    )
    upi_id = models.CharField(max_length=100, blank=True, default='')
    merchant_name = models.CharField(max_length=100, blank=True, default='')
    merchant_code = models.CharField(max_length=50, blank=True, default='')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Business Settings'
        verbose_name_plural = 'Business Settings'

    def __str__(self):
        return f"Business settings (GST {self.gst_percentage}%, delivery {self.delivery_fixed_charge})"

    @classmethod
    def load(cls) -> 'BusinessSettings':
        settings_row = cls.objects.order_by('id').first()
        if settings_row is None:
            settings_row = cls.objects.create()
        return settings_row

    def snapshot(self) -> SettingsSnapshot:
        return SettingsSnapshot(
            gst_percentage=self.gst_percentage,
            apply_gst=self.apply_gst,
            delivery_fixed_charge=self.delivery_fixed_charge,
            free_delivery_threshold=self.free_delivery_threshold,
            apply_to_all_orders=self.apply_delivery_to_all_orders,
            minimum_order_value=self.minimum_order_value,
        )


class Offer(models.Model):
    """
    Discount code. Percentage offers may be capped by max_discount_amount.
    """

    class DiscountType(models.TextChoices):
        PERCENTAGE = DiscountRule.PERCENTAGE, 'Percentage'
        FIXED = DiscountRule.FIXED, 'Fixed amount'

    code = models.CharField(
        max_length=40,
        unique=True,
        db_index=True,
        help_text="Code entered at checkout (stored upper-case)"
    )
    title = models.CharField(max_length=120)
    description = models.CharField(max_length=255, blank=True, default='')
    discount_type = models.CharField(max_length=20, choices=DiscountType.choices)
    discount_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    min_order_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))]
    )
    max_discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True
    )
    active = models.BooleanField(default=True, db_index=True)
    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Offer'
        verbose_name_plural = 'Offers'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.code} ({self.formatted_discount})"

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        super().save(*args, **kwargs)

    @property
    def formatted_discount(self) -> str:
        if self.discount_type == self.DiscountType.PERCENTAGE:
            return f"{self.discount_value}%"
        return f"{self.discount_value} off"

    def is_valid(self, now=None) -> bool:
        now = now or timezone.now()
        return (
            self.active
            and self.valid_from <= now <= self.valid_until
            and (self.usage_limit is None or self.usage_count < self.usage_limit)
        )

    def to_discount_rule(self) -> DiscountRule:
        return DiscountRule(
            kind=self.discount_type,
            value=self.discount_value,
            max_amount=self.max_discount_amount,
            min_order_value=self.min_order_value,
            code=self.code,
            description=self.description or self.title,
        )

    @classmethod
    def resolve(cls, code: str) -> DiscountRule:
        """
        Look up a checkout code and return its DiscountRule.

        Raises:
            ValidationError: unknown, inactive, expired or exhausted code
        """
        normalized = (code or '').strip().upper()
        offer = cls.objects.filter(code=normalized).first()
        if offer is None or not offer.is_valid():
            raise ValidationError(f"Discount code {normalized} is not valid")
        return offer.to_discount_rule()

    @classmethod
    def record_usage(cls, code: str) -> bool:
        """Atomically count one redemption; False if the limit was reached meanwhile."""
        updated = cls.objects.filter(
            Q(usage_limit__isnull=True) | Q(usage_count__lt=F('usage_limit')),
            code=code,
        ).update(usage_count=F('usage_count') + 1)
        return updated == 1
