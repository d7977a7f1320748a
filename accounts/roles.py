"""
Actor value passed into the order and payment services, plus DRF
permission classes for role-only endpoints.

Services never look at `request.user` directly; views build an Actor and
hand it down, so the rules can be exercised without HTTP.
"""
from dataclasses import dataclass

from rest_framework.permissions import BasePermission

from .models import User

ROLE_CUSTOMER = User.Role.CUSTOMER.value
ROLE_DELIVERY = User.Role.DELIVERY.value
ROLE_ADMIN = User.Role.ADMIN.value

ROLE_LABELS = {
    ROLE_CUSTOMER: 'customer',
    ROLE_DELIVERY: 'delivery agent',
    ROLE_ADMIN: 'admin',
}


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    name: str = ''

    @classmethod
    def from_user(cls, user) -> 'Actor':
        return cls(id=user.pk, role=user.role, name=user.display_name)

    @property
    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER

    @property
    def is_delivery_agent(self) -> bool:
        return self.role == ROLE_DELIVERY

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role)

    def as_dict(self) -> dict:
        return {'id': self.id, 'role': self.role}


class HasRole(BasePermission):
    allowed_roles = ()

    def has_permission(self, request, view):
        user = request.user
        return bool(
            user
            and user.is_authenticated
            and getattr(user, 'role', None) in self.allowed_roles
        )


class IsAdminRole(HasRole):
    allowed_roles = (ROLE_ADMIN,)


class IsDeliveryAgent(HasRole):
    allowed_roles = (ROLE_DELIVERY,)
