"""
Tests for business settings and discount offers.
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from business.models import BusinessSettings, Offer
from core.exceptions import ValidationError
from orders.models import Order
from orders.pricing import DiscountRule


class BusinessSettingsTestCase(TestCase):

    def test_load_creates_single_row(self):
        first = BusinessSettings.load()
        second = BusinessSettings.load()

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(BusinessSettings.objects.count(), 1)
        self.assertEqual(first.gst_percentage, Decimal('5.00'))
        self.assertEqual(first.minimum_order_value, Decimal('200.00'))

    def test_snapshot_mirrors_settings(self):
        row = BusinessSettings.load()
        row.apply_gst = False
        row.apply_delivery_to_all_orders = True
        row.save()

        snapshot = row.snapshot()

        self.assertFalse(snapshot.apply_gst)
        self.assertTrue(snapshot.apply_to_all_orders)
        self.assertEqual(snapshot.delivery_fixed_charge, Decimal('40.00'))
        self.assertEqual(snapshot.as_dict()['free_delivery_threshold'], '500.00')


class OfferTestCase(TestCase):

    def setUp(self):
        now = timezone.now()
        self.offer = Offer.objects.create(
            code=' flat50 ',
            title='Flat 50',
            discount_type=Offer.DiscountType.FIXED,
            discount_value=Decimal('50'),
            min_order_value=Decimal('400'),
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=1),
            usage_limit=2,
        )

    def test_code_is_normalized(self):
        self.offer.refresh_from_db()
        self.assertEqual(self.offer.code, 'FLAT50')
        self.assertEqual(self.offer.formatted_discount, '50.00 off')

    def test_resolve_returns_rule(self):
        rule = Offer.resolve('flat50')

        self.assertEqual(rule.kind, DiscountRule.FIXED)
        self.assertEqual(rule.value, Decimal('50.00'))
        self.assertEqual(rule.min_order_value, Decimal('400.00'))
        self.assertEqual(rule.code, 'FLAT50')

    def test_expired_and_inactive_codes_rejected(self):
        self.offer.valid_until = timezone.now() - timedelta(minutes=1)
        self.offer.save()
        with self.assertRaises(ValidationError):
            Offer.resolve('FLAT50')

        self.offer.valid_until = timezone.now() + timedelta(days=1)
        self.offer.active = False
        self.offer.save()
        with self.assertRaises(ValidationError):
            Offer.resolve('FLAT50')

    def test_usage_limit_enforced(self):
        self.assertTrue(Offer.record_usage('FLAT50'))
        self.assertTrue(Offer.record_usage('FLAT50'))
        self.assertFalse(Offer.record_usage('FLAT50'))

        self.offer.refresh_from_db()
        self.assertEqual(self.offer.usage_count, 2)
        with self.assertRaises(ValidationError):
            Offer.resolve('FLAT50')


class SeedDataCommandTestCase(TestCase):

    def test_seed_creates_users_offers_and_orders(self):
        call_command('seed_data', customers=2, agents=1, orders=5, stdout=StringIO())

        User = get_user_model()
        self.assertEqual(User.objects.filter(role=User.Role.CUSTOMER).count(), 2)
        self.assertEqual(User.objects.filter(role=User.Role.DELIVERY).count(), 1)
        self.assertTrue(Offer.objects.filter(code='WELCOME10').exists())
        self.assertLessEqual(Order.objects.count(), 5)
        self.assertEqual(BusinessSettings.load().upi_id, 'pizzashop@oksbi')
