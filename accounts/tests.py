"""
Tests for platform roles and role permissions.
"""
from unittest.mock import MagicMock

from django.test import TestCase

from accounts.models import User
from accounts.roles import Actor, IsAdminRole, IsDeliveryAgent


class ActorTestCase(TestCase):

    def test_actor_from_user(self):
        user = User.objects.create_user(
            username='agent7', password='pass1234', role=User.Role.DELIVERY,
            first_name='Vik', last_name='S', is_online=True, is_approved=True,
        )

        actor = Actor.from_user(user)

        self.assertEqual(actor.id, user.pk)
        self.assertTrue(actor.is_delivery_agent)
        self.assertFalse(actor.is_admin)
        self.assertEqual(actor.label, 'delivery agent')
        self.assertEqual(actor.name, 'Vik S')
        self.assertEqual(actor.as_dict(), {'id': user.pk, 'role': 'delivery'})
        self.assertTrue(user.can_take_deliveries)

    def test_new_users_default_to_customer(self):
        user = User.objects.create_user(username='plain', password='pass1234')

        self.assertTrue(user.is_customer)
        self.assertEqual(user.display_name, 'plain')
        self.assertFalse(user.can_take_deliveries)


class RolePermissionTestCase(TestCase):

    def request_for(self, role):
        request = MagicMock()
        request.user = User(username=f'{role}-user', role=role)
        return request

    def test_role_permissions(self):
        admin = self.request_for(User.Role.ADMIN)
        agent = self.request_for(User.Role.DELIVERY)
        customer = self.request_for(User.Role.CUSTOMER)

        self.assertTrue(IsAdminRole().has_permission(admin, None))
        self.assertFalse(IsAdminRole().has_permission(agent, None))
        self.assertTrue(IsDeliveryAgent().has_permission(agent, None))
        self.assertFalse(IsDeliveryAgent().has_permission(admin, None))
        self.assertFalse(IsDeliveryAgent().has_permission(customer, None))
