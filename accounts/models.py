"""
User model with the three platform roles.

Roles:
    - customer: places, cancels and rates own orders
    - delivery: moves assigned orders to delivery states, confirms payments
    - admin: unrestricted operational control
"""
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):

    class Role(models.TextChoices):
        CUSTOMER = 'customer', 'Customer'
        DELIVERY = 'delivery', 'Delivery Agent'
        ADMIN = 'admin', 'Admin'

    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.CUSTOMER,
        db_index=True,
        help_text="Platform role used for order permissions"
    )
    phone = models.CharField(max_length=20, blank=True, default='')
    is_online = models.BooleanField(
        default=False,
        help_text="Delivery agents only: currently accepting assignments"
    )
    is_approved = models.BooleanField(
        default=False,
        help_text="Delivery agents only: onboarding approved by an admin"
    )

    class Meta:
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return f"{self.display_name} ({self.role})"

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    @property
    def is_customer(self) -> bool:
        return self.role == self.Role.CUSTOMER

    @property
    def is_delivery_agent(self) -> bool:
        return self.role == self.Role.DELIVERY

    @property
    def is_admin_role(self) -> bool:
        return self.role == self.Role.ADMIN

    @property
    def can_take_deliveries(self) -> bool:
        return self.is_delivery_agent and self.is_online and self.is_approved
