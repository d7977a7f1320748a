"""
Tests for order pricing, lifecycle and persistence.

Test Cases:
1. Pricing breakdown and totals
2. Order creation with frozen business settings and discount codes
3. Role-gated status transitions
4. Conditional updates reject lost updates
5. Delivery agent assignment and rating
6. Lifecycle events are fire-and-forget
7. API responses and error rendering
"""
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import redis
from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.roles import Actor
from business.models import BusinessSettings, Offer
from core.exceptions import (
    AuthorizationError,
    GatewayError,
    NotFoundError,
    StateError,
    ValidationError,
)
from orders import lifecycle, services
from orders.models import Order, StatusUpdate
from orders.pricing import (
    Discount,
    DiscountRule,
    SettingsSnapshot,
    build_items,
    normalize_discount,
    price_order,
)
from orders.tasks import broadcast_order_event

User = get_user_model()

ADDRESS = {
    'street': '12 MG Road',
    'city': 'Bengaluru',
    'state': 'Karnataka',
    'zip_code': '560001',
}

DEFAULT_SNAPSHOT = SettingsSnapshot(
    gst_percentage=Decimal('5'),
    apply_gst=True,
    delivery_fixed_charge=Decimal('40'),
    free_delivery_threshold=Decimal('500'),
    apply_to_all_orders=False,
    minimum_order_value=Decimal('200'),
)


def make_user(username, role=User.Role.CUSTOMER, **extra):
    return User.objects.create_user(username=username, password='pass1234', role=role, **extra)


def make_agent(username, **extra):
    extra.setdefault('is_online', True)
    extra.setdefault('is_approved', True)
    return make_user(username, role=User.Role.DELIVERY, **extra)


def place_order(customer, items=None, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY, **kwargs):
    items = items or [{'name': 'Farmhouse Pizza', 'quantity': 2, 'base_price': '150.00'}]
    return services.create_order(
        Actor.from_user(customer),
        items=items,
        address=ADDRESS,
        payment_method=payment_method,
        **kwargs
    )


class PricingEngineTestCase(SimpleTestCase):
    """Pure pricing computation."""

    def test_add_on_priced_item_below_threshold_edge(self):
        """
        Test: Pricing of base price plus add-on at the free-delivery threshold.

        Given: Base price 200 with one 50 add-on, quantity 2, GST 5%,
               delivery 40 charged only below a 500 subtotal
        When: Pricing the order
        Then: subtotal=500, tax=25, delivery fee=0, total=525
        """
        items = build_items([{
            'name': 'Paneer Pizza',
            'quantity': 2,
            'base_price': 200,
            'add_ons': [{'name': 'Extra Cheese', 'price': 50}],
        }])

        breakdown = price_order(items, DEFAULT_SNAPSHOT)

        self.assertEqual(breakdown.subtotal, Decimal('500.00'))
        self.assertEqual(breakdown.tax, Decimal('25.00'))
        self.assertEqual(breakdown.delivery_fee, Decimal('0.00'))
        self.assertEqual(breakdown.total, Decimal('525.00'))

    def test_percentage_discount_is_capped(self):
        """
        Test: 10% discount on 600 is capped at 50.
        """
        items = build_items([{'name': 'Pizza', 'quantity': 2, 'base_price': '300'}])
        rule = DiscountRule(kind=DiscountRule.PERCENTAGE, value=Decimal('10'), max_amount=Decimal('50'), code='SAVE10')

        breakdown = price_order(items, DEFAULT_SNAPSHOT, rule)

        self.assertEqual(breakdown.discount.amount, Decimal('50.00'))
        self.assertEqual(breakdown.discount.percentage, Decimal('10'))
        self.assertEqual(
            breakdown.total,
            breakdown.subtotal + breakdown.tax + breakdown.delivery_fee - Decimal('50')
        )
        self.assertEqual(breakdown.total, Decimal('580.00'))

    def test_discount_larger_than_order_never_goes_negative(self):
        snapshot = SettingsSnapshot(apply_gst=False, minimum_order_value=Decimal('0'))
        items = build_items([{'name': 'Cold Coffee', 'quantity': 1, 'base_price': '99'}])
        rule = DiscountRule(kind=DiscountRule.FIXED, value=Decimal('500'))

        breakdown = price_order(items, snapshot, rule)

        self.assertEqual(breakdown.discount.amount, Decimal('99.00'))
        self.assertEqual(breakdown.total, Decimal('0.00'))

    def test_delivery_charged_on_all_orders_when_configured(self):
        snapshot = SettingsSnapshot(
            gst_percentage=Decimal('5'),
            delivery_fixed_charge=Decimal('40'),
            free_delivery_threshold=Decimal('500'),
            apply_to_all_orders=True,
        )
        items = build_items([{'name': 'Pizza', 'quantity': 3, 'base_price': '300'}])

        breakdown = price_order(items, snapshot)

        self.assertEqual(breakdown.delivery_fee, Decimal('40.00'))
        self.assertEqual(breakdown.total, Decimal('900') + Decimal('45.00') + Decimal('40.00'))

    def test_missing_gst_percentage_uses_fallback(self):
        snapshot = SettingsSnapshot(gst_percentage=None, apply_gst=True)
        items = build_items([{'name': 'Burger', 'quantity': 1, 'base_price': '100'}])

        breakdown = price_order(items, snapshot, default_gst_percentage=Decimal('5'))

        self.assertEqual(breakdown.tax_percentage, Decimal('5'))
        self.assertEqual(breakdown.tax, Decimal('5.00'))

    def test_negative_modifier_price_is_free(self):
        items = build_items([{
            'name': 'Pizza',
            'quantity': 1,
            'base_price': '250',
            'toppings': [{'name': 'Olives', 'price': '-30'}, 'Oregano'],
        }])

        self.assertEqual(items[0].unit_price, Decimal('250.00'))
        self.assertEqual(len(items[0].modifiers), 2)

    def test_malformed_modifier_rejected(self):
        for bad in (5, ['Olives'], None):
            with self.assertRaises(ValidationError) as context:
                build_items([{'name': 'Pizza', 'quantity': 1, 'base_price': '250', 'toppings': [bad]}])
            self.assertIn('topping modifier', str(context.exception))

    def test_discount_shapes_are_normalized(self):
        self.assertEqual(normalize_discount(None), Discount())
        self.assertEqual(normalize_discount('40'), Discount(amount=Decimal('40.00')))
        self.assertEqual(normalize_discount(-5), Discount(amount=Decimal('0.00')))

        structured = normalize_discount({
            'amount': '25.5', 'percentage': '10', 'code': ' save10 ', 'description': 'Weekend',
        })
        self.assertEqual(structured.amount, Decimal('25.50'))
        self.assertEqual(structured.percentage, Decimal('10'))
        self.assertEqual(structured.code, 'save10')
        self.assertEqual(structured.description, 'Weekend')

        with self.assertRaises(ValidationError):
            normalize_discount({'amount': 'lots'})

    def test_below_minimum_order_value(self):
        items = build_items([{'name': 'Garlic Bread', 'quantity': 1, 'base_price': '129'}])

        with self.assertRaises(ValidationError) as context:
            price_order(items, DEFAULT_SNAPSHOT)

        self.assertIn('Minimum order value', str(context.exception))

    def test_empty_items_rejected(self):
        with self.assertRaises(ValidationError):
            price_order([], DEFAULT_SNAPSHOT)

    def test_invalid_quantity_rejected(self):
        with self.assertRaises(ValidationError):
            build_items([{'name': 'Pizza', 'quantity': 0, 'base_price': '100'}])

    def test_total_identity_holds_across_orders(self):
        """
        Test: total == subtotal + tax + fee - discount, and total >= 0.
        """
        rules = [
            None,
            DiscountRule(kind=DiscountRule.FIXED, value=Decimal('75')),
            DiscountRule(kind=DiscountRule.PERCENTAGE, value=Decimal('15')),
        ]
        for quantity in (1, 2, 5):
            for rule in rules:
                items = build_items([{'name': 'Pizza', 'quantity': quantity, 'base_price': '219.99'}])
                b = price_order(items, DEFAULT_SNAPSHOT, rule)
                self.assertEqual(b.total, b.subtotal + b.tax + b.delivery_fee - b.discount.amount)
                self.assertGreaterEqual(b.total, Decimal('0'))


class OrderCreationTestCase(TestCase):
    """Order placement through the service layer."""

    def setUp(self):
        self.customer = make_user('asha', first_name='Asha', last_name='Rao', phone='9876543210')
        self.settings_row = BusinessSettings.load()

    def test_order_created_pending_with_seeded_history(self):
        """
        Given: A valid cart above the minimum order value
        When: The customer places the order
        Then: Order is Pending with priced items and one 'Order created' entry
        """
        order = place_order(self.customer)

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(order.subtotal, Decimal('300.00'))
        self.assertEqual(order.tax, Decimal('15.00'))
        self.assertEqual(order.delivery_fee, Decimal('40.00'))
        self.assertEqual(order.total, Decimal('355.00'))
        self.assertEqual(order.customer_name, 'Asha Rao')
        self.assertEqual(order.full_address, '12 MG Road, Bengaluru, Karnataka 560001')
        self.assertTrue(order.order_number.startswith('ORD'))

        history = list(order.status_history.all())
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].note, 'Order created')

    def test_settings_snapshot_is_frozen(self):
        """
        Given: An order priced at 5% GST
        When: The business raises GST afterwards
        Then: The stored order keeps its original tax and snapshot
        """
        order = place_order(self.customer)

        self.settings_row.gst_percentage = Decimal('18.00')
        self.settings_row.save()

        order.refresh_from_db()
        self.assertEqual(order.tax, Decimal('15.00'))
        self.assertEqual(order.applied_settings['gst_percentage'], '5.00')

        newer = place_order(self.customer)
        self.assertEqual(newer.tax, Decimal('54.00'))

    def test_discount_code_applied_and_counted(self):
        Offer.objects.create(
            code='save10',
            title='Save 10',
            discount_type=Offer.DiscountType.PERCENTAGE,
            discount_value=Decimal('10'),
            max_discount_amount=Decimal('50'),
            valid_from=timezone.now() - timedelta(days=1),
            valid_until=timezone.now() + timedelta(days=1),
            usage_limit=1,
        )
        items = [{'name': 'Pizza', 'quantity': 2, 'base_price': '300'}]

        order = place_order(self.customer, items=items, discount_code='SAVE10')

        self.assertEqual(order.discount_amount, Decimal('50.00'))
        self.assertEqual(order.discount_code, 'SAVE10')
        self.assertEqual(order.total, Decimal('580.00'))
        self.assertEqual(Offer.objects.get(code='SAVE10').usage_count, 1)

        with self.assertRaises(ValidationError):
            place_order(self.customer, items=items, discount_code='SAVE10')

    def test_unknown_discount_code_rejected(self):
        with self.assertRaises(ValidationError) as context:
            place_order(self.customer, discount_code='NOPE')

        self.assertIn('NOPE', str(context.exception))
        self.assertEqual(Order.objects.count(), 0)

    def test_legacy_discounts_value_is_normalized(self):
        """
        Given: A client sending the older `discounts` shape
        When: It carries a code, or only a bare amount
        Then: The code is priced server-side; an amount alone is rejected
        """
        Offer.objects.create(
            code='FLAT50',
            title='Flat 50',
            discount_type=Offer.DiscountType.FIXED,
            discount_value=Decimal('50'),
            valid_from=timezone.now() - timedelta(days=1),
            valid_until=timezone.now() + timedelta(days=1),
        )

        order = place_order(self.customer, discounts={'amount': 999, 'code': 'flat50'})

        self.assertEqual(order.discount_code, 'FLAT50')
        self.assertEqual(order.discount_amount, Decimal('50.00'))
        self.assertEqual(order.total, Decimal('305.00'))

        with self.assertRaises(ValidationError):
            place_order(self.customer, discounts=120)
        with self.assertRaises(ValidationError):
            place_order(self.customer, discount_code='FLAT50', discounts={'code': 'OTHER'})
        self.assertEqual(Order.objects.count(), 1)

    def test_below_minimum_rejected(self):
        with self.assertRaises(ValidationError):
            place_order(self.customer, items=[{'name': 'Coffee', 'quantity': 1, 'base_price': '99'}])

        self.assertEqual(Order.objects.count(), 0)

    def test_missing_address_fields_rejected(self):
        with self.assertRaises(ValidationError) as context:
            services.create_order(
                Actor.from_user(self.customer),
                items=[{'name': 'Pizza', 'quantity': 2, 'base_price': '150'}],
                address={'street': '12 MG Road'},
                payment_method=Order.PaymentMethod.UPI,
            )

        self.assertIn('city', str(context.exception))


class OrderLifecycleTestCase(TestCase):
    """Role-gated status transitions."""

    def setUp(self):
        self.customer = make_user('ravi')
        self.other_customer = make_user('meera')
        self.agent = make_agent('dev')
        self.other_agent = make_agent('kiran')
        self.admin = make_user('boss', role=User.Role.ADMIN)
        self.order = place_order(self.customer)
        services.assign_delivery_agent(self.order.pk, Actor.from_user(self.admin), self.agent.pk)

    def actor(self, user):
        return Actor.from_user(user)

    def test_customer_cancels_preparing_order_once(self):
        """
        Given: An order in Preparing
        When: The customer cancels it, then cancels again
        Then: First cancel succeeds with a new history entry; second is a StateError
        """
        services.transition_status(self.order.pk, self.actor(self.admin), Order.Status.PREPARING)
        history_before = StatusUpdate.objects.filter(order=self.order).count()

        order = services.cancel_order(self.order.pk, self.actor(self.customer))

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(StatusUpdate.objects.filter(order=self.order).count(), history_before + 1)
        self.assertEqual(order.status_history.last().status, Order.Status.CANCELLED)

        with self.assertRaises(StateError):
            services.cancel_order(self.order.pk, self.actor(self.customer))

    def test_customer_cannot_move_to_other_states(self):
        """
        Test: Any customer transition other than Cancelled is an AuthorizationError.
        """
        for target in (Order.Status.PREPARING, Order.Status.OUT_FOR_DELIVERY, Order.Status.DELIVERED):
            with self.assertRaises(AuthorizationError):
                services.transition_status(self.order.pk, self.actor(self.customer), target)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_customer_cannot_cancel_someone_elses_order(self):
        with self.assertRaises(AuthorizationError):
            services.cancel_order(self.order.pk, self.actor(self.other_customer))

    def test_customer_cannot_cancel_out_for_delivery(self):
        services.transition_status(self.order.pk, self.actor(self.agent), Order.Status.OUT_FOR_DELIVERY)

        with self.assertRaises(StateError):
            services.cancel_order(self.order.pk, self.actor(self.customer))

    def test_unassigned_agent_cannot_update(self):
        """
        Given: An order assigned to another agent
        When: An unassigned delivery agent attempts any status update
        Then: AuthorizationError and the order is unchanged
        """
        for target in Order.Status.values:
            with self.assertRaises(AuthorizationError):
                services.transition_status(self.order.pk, self.actor(self.other_agent), target)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(self.order.status_history.count(), 2)

    def test_cod_order_cannot_be_delivered_unpaid(self):
        services.transition_status(self.order.pk, self.actor(self.agent), Order.Status.OUT_FOR_DELIVERY)

        with self.assertRaises(StateError) as context:
            services.transition_status(self.order.pk, self.actor(self.agent), Order.Status.DELIVERED)

        self.assertIn('Payment must be completed', str(context.exception))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.OUT_FOR_DELIVERY)

    def test_online_order_can_be_delivered_by_agent(self):
        order = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)
        services.assign_delivery_agent(order.pk, self.actor(self.admin), self.agent.pk)
        services.transition_status(order.pk, self.actor(self.agent), Order.Status.OUT_FOR_DELIVERY)

        order = services.transition_status(order.pk, self.actor(self.agent), Order.Status.DELIVERED)

        self.assertEqual(order.status, Order.Status.DELIVERED)

    def test_agent_cannot_set_preparing(self):
        with self.assertRaises(StateError):
            services.transition_status(self.order.pk, self.actor(self.agent), Order.Status.PREPARING)

    def test_out_for_delivery_sets_estimated_time(self):
        order = services.transition_status(self.order.pk, self.actor(self.agent), Order.Status.OUT_FOR_DELIVERY)

        self.assertIsNotNone(order.estimated_delivery_time)
        self.assertEqual(
            order.status_history.last().note,
            'Status updated to Out for delivery by delivery agent'
        )

    def test_admin_override_and_terminal_states(self):
        order = services.transition_status(self.order.pk, self.actor(self.admin), Order.Status.DELIVERED)
        self.assertEqual(order.status, Order.Status.DELIVERED)

        for target in (Order.Status.PENDING, Order.Status.CANCELLED):
            with self.assertRaises(StateError):
                services.transition_status(self.order.pk, self.actor(self.admin), target)

    def test_same_state_transition_rejected(self):
        with self.assertRaises(StateError):
            services.transition_status(self.order.pk, self.actor(self.admin), Order.Status.PENDING)

    def test_history_timestamps_non_decreasing(self):
        admin = self.actor(self.admin)
        services.transition_status(self.order.pk, admin, Order.Status.PREPARING)
        services.transition_status(self.order.pk, admin, Order.Status.OUT_FOR_DELIVERY, note='Rider left')
        services.transition_status(self.order.pk, admin, Order.Status.DELIVERED)

        times = [entry.created_at for entry in services.repository.history(self.order)]
        self.assertEqual(times, sorted(times))
        self.assertEqual(len(times), 5)

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            services.transition_status(999999, self.actor(self.admin), Order.Status.PREPARING)

    def test_can_transition_graph(self):
        Status = Order.Status
        self.assertTrue(lifecycle.can_transition(from_status=Status.PENDING, to_status=Status.PREPARING))
        self.assertFalse(lifecycle.can_transition(from_status=Status.OUT_FOR_DELIVERY, to_status=Status.CANCELLED))
        self.assertTrue(lifecycle.can_transition(
            from_status=Status.OUT_FOR_DELIVERY, to_status=Status.CANCELLED, override=True
        ))
        self.assertFalse(lifecycle.can_transition(
            from_status=Status.CANCELLED, to_status=Status.PENDING, override=True
        ))


class ConditionalUpdateTestCase(TestCase):
    """Lost-update detection in the repository."""

    def setUp(self):
        self.customer = make_user('neha')
        self.admin = make_user('ops', role=User.Role.ADMIN)
        self.order = place_order(self.customer)

    def test_stale_read_is_rejected(self):
        """
        Given: An admin decision based on a stale read (Pending)
        When: Another actor moved the order to Preparing in between
        Then: The conditional write matches no row and raises StateError;
              the other actor's update survives
        """
        stale = services.repository.find_by_id(self.order.pk)
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.PREPARING)

        with patch.object(services.repository, 'find_by_id', return_value=stale):
            with self.assertRaises(StateError) as context:
                services.transition_status(self.order.pk, Actor.from_user(self.admin), Order.Status.CANCELLED)

        self.assertIn('modified concurrently', str(context.exception))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PREPARING)
        self.assertEqual(self.order.status_history.count(), 1)

    def test_update_if_refuses_pricing_fields(self):
        with self.assertRaises(ValueError):
            services.repository.update_if(self.order, {'status': self.order.status}, total=Decimal('1.00'))

    def test_status_history_is_append_only(self):
        entry = self.order.status_history.first()
        entry.note = 'rewritten'

        with self.assertRaises(ValueError):
            entry.save()


class AssignmentAndRatingTestCase(TestCase):

    def setUp(self):
        self.customer = make_user('isha')
        self.admin = make_user('lead', role=User.Role.ADMIN)
        self.agent = make_agent('sam', first_name='Sam', last_name='Das')
        self.order = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)

    def test_assign_and_unassign(self):
        admin = Actor.from_user(self.admin)

        order = services.assign_delivery_agent(self.order.pk, admin, self.agent.pk)
        self.assertEqual(order.delivery_agent_id, self.agent.pk)
        self.assertEqual(order.delivery_agent_name, 'Sam Das')
        self.assertEqual(order.status_history.last().note, 'Assigned to Sam Das')

        order = services.assign_delivery_agent(self.order.pk, admin, None)
        self.assertIsNone(order.delivery_agent_id)
        self.assertEqual(order.delivery_agent_name, 'Unassigned')

    def test_assignment_rules(self):
        admin = Actor.from_user(self.admin)
        offline = make_agent('offline', is_online=False)

        with self.assertRaises(AuthorizationError):
            services.assign_delivery_agent(self.order.pk, Actor.from_user(self.customer), self.agent.pk)
        with self.assertRaises(NotFoundError):
            services.assign_delivery_agent(self.order.pk, admin, 424242)
        with self.assertRaises(ValidationError):
            services.assign_delivery_agent(self.order.pk, admin, self.customer.pk)
        with self.assertRaises(StateError):
            services.assign_delivery_agent(self.order.pk, admin, offline.pk)

    def test_rate_delivered_order_once(self):
        services.transition_status(self.order.pk, Actor.from_user(self.admin), Order.Status.DELIVERED)
        customer = Actor.from_user(self.customer)

        order = services.rate_order(self.order.pk, customer, 5, 'Hot and fresh')

        self.assertEqual(order.rating, 5)
        self.assertEqual(order.status_history.last().note, 'Order rated 5/5 stars by customer')
        with self.assertRaises(StateError):
            services.rate_order(self.order.pk, customer, 4)

    def test_rating_validation(self):
        with self.assertRaises(ValidationError):
            services.rate_order(self.order.pk, Actor.from_user(self.customer), 6)
        with self.assertRaises(StateError):
            services.rate_order(self.order.pk, Actor.from_user(self.customer), 4)


class LifecycleEventTestCase(TestCase):
    """Events are dispatched after commit and never break the mutation."""

    def setUp(self):
        self.customer = make_user('tara')
        self.admin = make_user('root', role=User.Role.ADMIN)
        self.order = place_order(self.customer)

    def test_event_dispatched_after_commit(self):
        with patch('orders.tasks.broadcast_order_event.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                services.transition_status(self.order.pk, Actor.from_user(self.admin), Order.Status.PREPARING)

        delay.assert_called_once()
        event = delay.call_args[0][0]
        self.assertEqual(event['orderId'], self.order.pk)
        self.assertEqual(event['previousStatus'], Order.Status.PENDING)
        self.assertEqual(event['newStatus'], Order.Status.PREPARING)
        self.assertEqual(event['triggerType'], 'status_change')
        self.assertEqual(event['actor'], {'id': self.admin.pk, 'role': 'admin'})

    def test_sink_failure_does_not_fail_mutation(self):
        """
        Given: The event queue is down
        When: A status transition commits
        Then: The transition still succeeds and is persisted
        """
        with patch('orders.tasks.broadcast_order_event.delay', side_effect=RuntimeError('broker down')):
            with self.captureOnCommitCallbacks(execute=True):
                order = services.cancel_order(self.order.pk, Actor.from_user(self.customer))

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)

    def test_no_event_when_mutation_fails(self):
        with patch('orders.tasks.broadcast_order_event.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertRaises(AuthorizationError):
                    services.transition_status(
                        self.order.pk, Actor.from_user(self.customer), Order.Status.PREPARING
                    )

        delay.assert_not_called()

    def test_broadcast_publishes_to_channel(self):
        client = MagicMock()
        client.publish.return_value = 2
        event = {'orderId': 1, 'orderNumber': 'ORD1', 'triggerType': 'status_change'}

        with patch('core.cache.redis_client', client):
            result = broadcast_order_event(event)

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['receivers'], 2)
        channel, payload = client.publish.call_args[0]
        self.assertEqual(channel, 'orders:events')
        self.assertEqual(json.loads(payload), event)

    def test_broadcast_publish_failure_raises_gateway_error(self):
        client = MagicMock()
        client.publish.side_effect = redis.ConnectionError('gone')

        with patch('core.cache.redis_client', client):
            with self.assertRaises(GatewayError):
                broadcast_order_event({'orderId': 1, 'orderNumber': 'ORD1', 'triggerType': 'rated'})

    def test_broadcast_skipped_without_redis(self):
        with patch('core.cache.redis_client', None):
            result = broadcast_order_event({'orderId': 1, 'orderNumber': 'ORD1', 'triggerType': 'rated'})

        self.assertEqual(result['status'], 'skipped')


class OrderAPITestCase(TestCase):
    """HTTP surface and error rendering."""

    def setUp(self):
        self.client = APIClient()
        self.customer = make_user('api-customer')
        self.admin = make_user('api-admin', role=User.Role.ADMIN)
        self.agent = make_agent('api-agent')

    def test_create_and_fetch_order(self):
        self.client.force_authenticate(self.customer)
        payload = {
            'items': [{
                'name': 'Margherita',
                'quantity': 2,
                'base_price': '200.00',
                'toppings': [{'name': 'Olives', 'price': '50.00'}],
            }],
            'address': ADDRESS,
            'payment_method': 'Cash on Delivery',
        }

        response = self.client.post('/api/orders/', payload, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], 'Pending')
        self.assertEqual(response.data['total'], '525.00')
        self.assertEqual(response.data['items'][0]['unit_price'], '250.00')

        detail = self.client.get(f"/api/orders/{response.data['id']}/")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.data['status_history'][0]['note'], 'Order created')

    def test_customer_list_is_scoped(self):
        mine = place_order(self.customer)
        place_order(make_user('someone-else'))
        self.client.force_authenticate(self.customer)

        response = self.client.get('/api/orders/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['orders'][0]['id'], mine.pk)

    def test_status_update_response_shape(self):
        order = place_order(self.customer)
        self.client.force_authenticate(self.admin)

        response = self.client.put(f'/api/orders/{order.pk}/status/', {'status': 'Preparing'}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['order']['status'], 'Preparing')
        self.assertEqual(len(response.data['order']['status_history']), 2)

    def test_domain_errors_render_with_stable_codes(self):
        order = place_order(self.customer)

        self.client.force_authenticate(self.customer)
        forbidden = self.client.put(f'/api/orders/{order.pk}/status/', {'status': 'Delivered'}, format='json')
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.data['error'], 'not_authorized')

        missing = self.client.get('/api/orders/999999/')
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.data['error'], 'not_found')

        self.client.post(f'/api/orders/{order.pk}/cancel/')
        conflict = self.client.post(f'/api/orders/{order.pk}/cancel/')
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.data['error'], 'invalid_state')

        invalid = self.client.post('/api/orders/', {'items': [], 'address': ADDRESS}, format='json')
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.data['error'], 'validation_error')

    def test_unexpected_error_is_generic(self):
        order = place_order(self.customer)
        self.client.force_authenticate(self.customer)

        with patch('orders.services.get_order', side_effect=RuntimeError('database password is hunter2')):
            response = self.client.get(f'/api/orders/{order.pk}/')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['error'], 'server_error')
        self.assertNotIn('hunter2', response.data['detail'])

    def test_stats_admin_only(self):
        place_order(self.customer)

        self.client.force_authenticate(self.customer)
        self.assertEqual(self.client.get('/api/orders/stats/').status_code, 403)

        self.client.force_authenticate(self.admin)
        response = self.client.get('/api/orders/stats/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['total_orders'], 1)
        self.assertEqual(response.data['pending_orders'], 1)

    def test_assign_agent_endpoint(self):
        order = place_order(self.customer)
        self.client.force_authenticate(self.admin)

        response = self.client.put(
            f'/api/orders/{order.pk}/delivery-agent/',
            {'delivery_agent_id': self.agent.pk},
            format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['delivery_agent'], self.agent.pk)

    def test_malformed_modifier_is_a_validation_error(self):
        self.client.force_authenticate(self.customer)
        payload = {
            'items': [{'name': 'Margherita', 'quantity': 2, 'base_price': '200.00', 'toppings': [5]}],
            'address': ADDRESS,
            'payment_method': 'Cash on Delivery',
        }

        response = self.client.post('/api/orders/', payload, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'validation_error')
        self.assertEqual(Order.objects.count(), 0)

    def test_delivered_revenue_is_formatted_as_money(self):
        order = place_order(self.customer)
        services.transition_status(order.pk, Actor.from_user(self.admin), Order.Status.DELIVERED)
        self.client.force_authenticate(self.admin)

        response = self.client.get('/api/orders/stats/')

        self.assertEqual(response.data['delivered_orders'], 1)
        self.assertEqual(response.data['delivered_revenue'], '355.00')

    @override_settings(RATE_LIMIT_ENABLED=True)
    def test_order_placement_rate_limited_per_user(self):
        """
        Given: A customer authenticated through DRF (not the session)
        When: The placement counter is over the limit
        Then: 429 with retry hints, counted against the user's own bucket
        """
        client = MagicMock()
        client.incr.return_value = 11
        client.ttl.return_value = 42
        self.client.force_authenticate(self.customer)

        with patch('core.rate_limiting.redis_client', client):
            response = self.client.post('/api/orders/', {'items': []}, format='json')

        client.incr.assert_called_once_with(f'rate_limit:OrderListCreateView:user:{self.customer.pk}')
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.data['error'], 'rate_limited')
        self.assertEqual(response.data['retry_after'], 42)
        self.assertEqual(response['Retry-After'], '42')
        self.assertEqual(response['X-RateLimit-Remaining'], '0')
        self.assertEqual(Order.objects.count(), 0)
