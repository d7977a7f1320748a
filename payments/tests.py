"""
Tests for payment reconciliation and the transaction ledger.

Test Cases:
1. Delivery agent settling COD/UPI posts exactly one ledger entry
2. Repeated completion never double-posts
3. Role rules for payment updates
4. Online completions are verified with the gateway
5. Lost updates are rejected
6. Ledger entries are immutable
7. Ledger reads, daily report and API
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.core.exceptions import ValidationError as ModelValidationError
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.roles import Actor
from business.models import BusinessSettings
from core.exceptions import AuthorizationError, GatewayError, StateError, ValidationError
from orders import services as order_services
from orders.models import Order
from orders.tests import make_agent, make_user, place_order
from payments import services
from payments.models import Transaction
from payments.tasks import generate_daily_settlement_report

Completed = Order.PaymentStatus.COMPLETED

GATEWAY_DETAILS = {
    'gateway_order_id': 'order_Nx81',
    'gateway_payment_id': 'pay_Nx81',
    'gateway_signature': 'sig',
    'verification_status': 'Verified',
}


class PaymentTestMixin:

    def setUp(self):
        business = BusinessSettings.load()
        business.upi_id = 'pizzashop@oksbi'
        business.merchant_name = 'Pizza Shop'
        business.merchant_code = 'PIZZASHP001'
        business.save()

        self.customer = make_user('priya', first_name='Priya', last_name='N')
        self.other_customer = make_user('arjun')
        self.agent = make_agent('rider', first_name='Rahul', last_name='K')
        self.other_agent = make_agent('rider2')
        self.admin = make_user('manager', role='admin')

        self.order = place_order(self.customer)
        order_services.assign_delivery_agent(self.order.pk, self.as_actor(self.admin), self.agent.pk)

    def as_actor(self, user):
        return Actor.from_user(user)


class LedgerPolicyTestCase(PaymentTestMixin, TestCase):
    """Ledger creation is gated on the persisted payment state."""

    def test_agent_completing_cod_posts_one_entry(self):
        """
        Given: A COD order assigned to the agent
        When: The agent marks the payment Completed
        Then: One ledger entry for the order total, confirmed by the agent
        """
        result = services.reconcile_payment(self.order.pk, self.as_actor(self.agent), payment_status=Completed)

        self.assertEqual(result.order.payment_status, Completed)
        self.assertEqual(result.order.settlement_count, 1)
        entry = result.transaction
        self.assertIsNotNone(entry)
        self.assertEqual(entry.amount, self.order.total)
        self.assertEqual(entry.settlement, 1)
        self.assertEqual(entry.payment_method, 'Cash on Delivery')
        self.assertEqual(entry.confirmed_by_id, self.agent.pk)
        self.assertEqual(entry.confirmed_by_name, 'Rahul K')
        self.assertEqual(entry.confirmed_by_role, 'delivery')
        self.assertEqual(entry.customer_id, self.customer.pk)
        self.assertEqual(entry.upi_id, 'pizzashop@oksbi')
        self.assertEqual(entry.upi_reference, self.order.order_number)

        note = result.order.status_history.last().note
        self.assertEqual(note, 'Payment status updated to Completed by delivery agent')

    def test_repeated_completion_posts_once(self):
        """
        Test: Reconciling twice with the same completion intent yields one entry.
        """
        agent = self.as_actor(self.agent)

        first = services.reconcile_payment(self.order.pk, agent, payment_status=Completed)
        second = services.reconcile_payment(self.order.pk, agent, payment_status=Completed)

        self.assertIsNotNone(first.transaction)
        self.assertIsNone(second.transaction)
        self.assertEqual(Transaction.objects.filter(order=self.order).count(), 1)
        self.assertEqual(second.order.settlement_count, 1)

    def test_explicit_transaction_is_idempotent(self):
        admin = self.as_actor(self.admin)

        services.reconcile_payment(self.order.pk, admin, create_transaction=True, upi={'reference': 'UTR99'})
        services.reconcile_payment(self.order.pk, admin, create_transaction=True)

        entries = Transaction.objects.filter(order=self.order)
        self.assertEqual(entries.count(), 1)
        self.assertEqual(entries.get().upi_reference, 'UTR99')

    def test_admin_completion_without_flag_posts_nothing(self):
        result = services.reconcile_payment(self.order.pk, self.as_actor(self.admin), payment_status=Completed)

        self.assertIsNone(result.transaction)
        self.assertEqual(result.order.settlement_count, 1)

    def test_refund_then_resettle_posts_second_entry(self):
        admin = self.as_actor(self.admin)

        services.reconcile_payment(self.order.pk, admin, create_transaction=True)
        services.reconcile_payment(self.order.pk, admin, payment_status=Order.PaymentStatus.REFUNDED)
        result = services.reconcile_payment(self.order.pk, admin, create_transaction=True)

        self.assertEqual(result.transaction.settlement, 2)
        self.assertEqual(
            list(Transaction.objects.filter(order=self.order).order_by('settlement').values_list('settlement', flat=True)),
            [1, 2]
        )

    def test_transaction_flag_requires_completed(self):
        with self.assertRaises(ValidationError):
            services.reconcile_payment(
                self.order.pk,
                self.as_actor(self.admin),
                payment_status=Order.PaymentStatus.FAILED,
                create_transaction=True,
            )

    def test_nothing_to_update(self):
        with self.assertRaises(ValidationError):
            services.reconcile_payment(self.order.pk, self.as_actor(self.admin))


class PaymentWithStatusTestCase(PaymentTestMixin, TestCase):
    """Payment and status updated together."""

    def setUp(self):
        super().setUp()
        order_services.transition_status(self.order.pk, self.as_actor(self.agent), Order.Status.OUT_FOR_DELIVERY)

    def test_cod_delivery_blocked_while_unpaid(self):
        with self.assertRaises(StateError):
            services.reconcile_payment(self.order.pk, self.as_actor(self.agent), status=Order.Status.DELIVERED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.OUT_FOR_DELIVERY)
        self.assertFalse(Transaction.objects.exists())

    def test_collect_and_deliver_in_one_call(self):
        """
        Given: A COD order out for delivery
        When: The agent records payment Completed and status Delivered together
        Then: Order is Delivered and paid with one ledger entry
        """
        result = services.reconcile_payment(
            self.order.pk,
            self.as_actor(self.agent),
            payment_status=Completed,
            status=Order.Status.DELIVERED,
        )

        self.assertEqual(result.order.status, Order.Status.DELIVERED)
        self.assertEqual(result.order.payment_status, Completed)
        self.assertIsNotNone(result.transaction)
        self.assertEqual(
            result.order.status_history.last().note,
            'Payment status updated to Completed by delivery agent and status updated to Delivered'
        )

    def test_payment_update_emits_event(self):
        with patch('orders.tasks.broadcast_order_event.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                services.reconcile_payment(self.order.pk, self.as_actor(self.agent), payment_status=Completed)

        event = delay.call_args[0][0]
        self.assertEqual(event['triggerType'], 'payment_update')
        self.assertEqual(event['paymentStatus'], Completed)


class PaymentAuthorizationTestCase(PaymentTestMixin, TestCase):

    def test_customer_cannot_confirm_cash(self):
        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(self.order.pk, self.as_actor(self.customer), payment_status=Completed)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)

    def test_unassigned_agent_rejected(self):
        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(self.order.pk, self.as_actor(self.other_agent), payment_status=Completed)

    def test_agent_cannot_refund(self):
        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(
                self.order.pk, self.as_actor(self.agent), payment_status=Order.PaymentStatus.REFUNDED
            )

    def test_agent_cannot_reopen_settled_payment(self):
        """
        Given: Cash collected and posted to the ledger by the agent
        When: The agent marks the payment Failed, then Completed again
        Then: The rollback is refused and the ledger keeps a single entry
        """
        agent = self.as_actor(self.agent)
        services.reconcile_payment(self.order.pk, agent, payment_status=Completed)

        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(self.order.pk, agent, payment_status=Order.PaymentStatus.FAILED)
        again = services.reconcile_payment(self.order.pk, agent, payment_status=Completed)

        self.assertIsNone(again.transaction)
        self.assertEqual(again.order.settlement_count, 1)
        self.assertEqual(Transaction.objects.filter(order=self.order).count(), 1)

    def test_customer_cannot_reopen_settled_payment(self):
        online = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)
        customer = self.as_actor(self.customer)
        services.reconcile_payment(online.pk, customer, payment_details=GATEWAY_DETAILS, create_transaction=True)

        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(online.pk, customer, payment_status=Order.PaymentStatus.FAILED)
        services.reconcile_payment(online.pk, customer, payment_details=GATEWAY_DETAILS, create_transaction=True)

        online.refresh_from_db()
        self.assertEqual(online.payment_status, Completed)
        self.assertEqual(
            list(Transaction.objects.filter(order=online).values_list('gateway_payment_id', flat=True)),
            ['pay_Nx81']
        )

    def test_admin_can_still_reverse_settled_payment(self):
        services.reconcile_payment(self.order.pk, self.as_actor(self.agent), payment_status=Completed)

        result = services.reconcile_payment(
            self.order.pk, self.as_actor(self.admin), payment_status=Order.PaymentStatus.FAILED
        )

        self.assertEqual(result.order.payment_status, Order.PaymentStatus.FAILED)

    def test_customer_cannot_touch_other_orders(self):
        online = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)

        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(
                online.pk, self.as_actor(self.other_customer),
                payment_status=Completed, payment_details=GATEWAY_DETAILS,
            )

    def test_customer_cannot_change_method_or_status(self):
        online = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)
        customer = self.as_actor(self.customer)

        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(online.pk, customer, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        with self.assertRaises(AuthorizationError):
            services.reconcile_payment(online.pk, customer, status=Order.Status.CANCELLED)


class GatewayVerificationTestCase(PaymentTestMixin, TestCase):
    """Online completions by non-admins go through the gateway verifier."""

    def setUp(self):
        super().setUp()
        self.online = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)

    def test_customer_attaches_verified_payment(self):
        result = services.reconcile_payment(
            self.online.pk,
            self.as_actor(self.customer),
            payment_status=Completed,
            payment_details=GATEWAY_DETAILS,
        )

        self.assertEqual(result.order.payment_status, Completed)
        self.assertEqual(result.order.payment_details['gateway_payment_id'], 'pay_Nx81')
        self.assertIn('updated_at', result.order.payment_details)
        self.assertIsNone(result.transaction)

    def test_missing_gateway_identifiers(self):
        with self.assertRaises(ValidationError) as context:
            services.reconcile_payment(
                self.online.pk,
                self.as_actor(self.customer),
                payment_status=Completed,
                payment_details={'verification_status': 'Verified'},
            )

        self.assertIn('gateway_order_id', str(context.exception))

    def test_gateway_refusal_writes_nothing(self):
        """
        Given: The gateway does not confirm the payment
        When: The customer reports it Completed
        Then: GatewayError; payment state and details unchanged, no ledger entry
        """
        with patch('payments.gateway.get_verifier', return_value=lambda details: False):
            with self.assertRaises(GatewayError):
                services.reconcile_payment(
                    self.online.pk,
                    self.as_actor(self.customer),
                    payment_status=Completed,
                    payment_details=GATEWAY_DETAILS,
                    create_transaction=True,
                )

        self.online.refresh_from_db()
        self.assertEqual(self.online.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(self.online.payment_details, {})
        self.assertFalse(Transaction.objects.filter(order=self.online).exists())

    def test_gateway_outage_is_gateway_error(self):
        verifier = MagicMock(side_effect=ConnectionError('timeout'))

        with patch('payments.gateway.get_verifier', return_value=verifier):
            with self.assertRaises(GatewayError):
                services.reconcile_payment(
                    self.online.pk,
                    self.as_actor(self.customer),
                    payment_status=Completed,
                    payment_details=GATEWAY_DETAILS,
                )

    def test_explicit_transaction_records_gateway_ids(self):
        order_services.assign_delivery_agent(self.online.pk, self.as_actor(self.admin), self.agent.pk)

        result = services.reconcile_payment(
            self.online.pk,
            self.as_actor(self.agent),
            payment_details=GATEWAY_DETAILS,
            create_transaction=True,
        )

        self.assertEqual(result.transaction.gateway_payment_id, 'pay_Nx81')
        self.assertEqual(result.transaction.upi_id, '')


class ConcurrentSettlementTestCase(PaymentTestMixin, TestCase):

    def test_duplicate_completion_from_stale_read(self):
        """
        Given: Two agents' requests both read the order while payment was Pending
        When: The first completes the payment, then the second writes
        Then: The second conditional write fails and only one entry exists
        """
        stale = order_services.repository.find_by_id(self.order.pk)
        services.reconcile_payment(self.order.pk, self.as_actor(self.agent), payment_status=Completed)

        with patch.object(order_services.repository, 'find_by_id', return_value=stale):
            with self.assertRaises(StateError):
                services.reconcile_payment(self.order.pk, self.as_actor(self.agent), payment_status=Completed)

        self.assertEqual(Transaction.objects.filter(order=self.order).count(), 1)


class TransactionLedgerTestCase(PaymentTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.entry = services.reconcile_payment(
            self.order.pk, self.as_actor(self.agent), payment_status=Completed
        ).transaction

    def test_entries_are_immutable(self):
        self.entry.notes = 'edited'

        with self.assertRaises(ModelValidationError):
            self.entry.save()
        with self.assertRaises(ModelValidationError):
            self.entry.delete()

    def test_list_scoping(self):
        other_order = place_order(self.other_customer, payment_method=Order.PaymentMethod.UPI)
        services.reconcile_payment(other_order.pk, self.as_actor(self.admin), create_transaction=True)

        self.assertEqual(services.list_transactions(self.as_actor(self.admin))['total'], 2)
        agent_view = services.list_transactions(self.as_actor(self.agent))
        self.assertEqual(agent_view['total'], 1)
        self.assertEqual(agent_view['transactions'][0].pk, self.entry.pk)
        with self.assertRaises(AuthorizationError):
            services.list_transactions(self.as_actor(self.customer))

    def test_get_transaction_access(self):
        self.assertEqual(services.get_transaction(self.entry.pk, self.as_actor(self.customer)).pk, self.entry.pk)
        with self.assertRaises(AuthorizationError):
            services.get_transaction(self.entry.pk, self.as_actor(self.other_customer))

    def test_transactions_in_range(self):
        now = timezone.now()

        result = services.transactions_in_range(now - timedelta(hours=1), now + timedelta(hours=1))
        self.assertEqual(result['count'], 1)
        self.assertEqual(result['total_amount'], self.order.total)

        empty = services.transactions_in_range(now - timedelta(days=3), now - timedelta(days=2))
        self.assertEqual(empty['count'], 0)
        self.assertEqual(empty['total_amount'], Decimal('0.00'))

    def test_daily_settlement_report(self):
        Transaction.objects.filter(pk=self.entry.pk).update(transaction_date=timezone.now() - timedelta(days=1))

        report = generate_daily_settlement_report()

        self.assertEqual(report['total_transactions'], 1)
        self.assertEqual(report['total_amount'], str(self.order.total))
        self.assertEqual(report['by_method']['Cash on Delivery']['count'], 1)
        self.assertEqual(report['by_method']['Cash on Delivery']['amount'], '355.00')
        self.assertEqual(report['total_amount'], '355.00')


class PaymentAPITestCase(PaymentTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_agent_settles_via_order_payment_endpoint(self):
        self.client.force_authenticate(self.agent)

        response = self.client.put(
            f'/api/orders/{self.order.pk}/payment/',
            {'payment_status': 'Completed', 'note': 'Cash collected'},
            format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['order']['payment_status'], 'Completed')
        self.assertEqual(response.data['transaction']['notes'], 'Cash collected')

    def test_explicit_posting_endpoint(self):
        self.client.force_authenticate(self.agent)

        first = self.client.post('/api/transactions/', {'order_id': self.order.pk}, format='json')
        second = self.client.post('/api/transactions/', {'order_id': self.order.pk}, format='json')

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertIsNone(second.data['transaction'])

        mine = self.client.get('/api/transactions/delivery/')
        self.assertEqual(mine.data['total'], 1)

    def test_customer_cannot_post_transactions(self):
        self.client.force_authenticate(self.customer)

        response = self.client.post('/api/transactions/', {'order_id': self.order.pk}, format='json')

        self.assertEqual(response.status_code, 403)

    def test_gateway_error_renders_502(self):
        online = place_order(self.customer, payment_method=Order.PaymentMethod.ONLINE)
        self.client.force_authenticate(self.customer)

        with patch('payments.gateway.get_verifier', return_value=lambda details: False):
            response = self.client.put(
                f'/api/transactions/{online.pk}/payment/',
                {'payment_status': 'Completed', 'payment_details': GATEWAY_DETAILS},
                format='json'
            )

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data['error'], 'gateway_error')

    def test_date_range_admin_only(self):
        services.reconcile_payment(self.order.pk, self.as_actor(self.admin), create_transaction=True)
        now = timezone.now()
        params = {
            'start_date': (now - timedelta(hours=1)).isoformat(),
            'end_date': (now + timedelta(hours=1)).isoformat(),
        }

        self.client.force_authenticate(self.agent)
        self.assertEqual(self.client.get('/api/transactions/date-range/', params).status_code, 403)

        self.client.force_authenticate(self.admin)
        response = self.client.get('/api/transactions/date-range/', params)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['total_amount'], '355.00')
