"""
Management command to seed the database with sample data.

Generates:
- Business settings row
- An admin, customers and approved delivery agents
- Discount offers
- Sample orders placed through the order service

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from accounts.roles import Actor
from business.models import BusinessSettings, Offer
from core.exceptions import OrderingError
from orders import services
from orders.models import Order

User = get_user_model()

DEFAULT_PASSWORD = 'password123'

MENU = [
    ('Margherita Pizza', '249.00'),
    ('Farmhouse Pizza', '329.00'),
    ('Paneer Tikka Pizza', '359.00'),
    ('Veg Burger', '149.00'),
    ('Garlic Bread', '129.00'),
    ('Pasta Arrabbiata', '219.00'),
    ('Cold Coffee', '99.00'),
    ('Choco Lava Cake', '109.00'),
]

TOPPINGS = [
    ('Extra Cheese', '40.00'),
    ('Olives', '30.00'),
    ('Jalapenos', '30.00'),
    ('Mushrooms', '35.00'),
]

CITIES = [
    ('Bengaluru', 'Karnataka', '560001'),
    ('Mumbai', 'Maharashtra', '400001'),
    ('Pune', 'Maharashtra', '411001'),
    ('Hyderabad', 'Telangana', '500001'),
]


class Command(BaseCommand):
    help = 'Seed the database with business settings, users, offers and sample orders'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing orders, offers and seeded users before seeding',
        )
        parser.add_argument(
            '--customers',
            type=int,
            default=10,
            help='Number of customers to create (default: 10)',
        )
        parser.add_argument(
            '--agents',
            type=int,
            default=3,
            help='Number of delivery agents to create (default: 3)',
        )
        parser.add_argument(
            '--orders',
            type=int,
            default=25,
            help='Number of sample orders to place (default: 25)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            self._create_settings()
            self._create_admin()
            customers = self._create_users('customer', User.Role.CUSTOMER, options['customers'])
            self._create_users('agent', User.Role.DELIVERY, options['agents'])
            self._create_offers()

        self._create_orders(customers, options['orders'])

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear all seeded data. Ledger rows go first; they protect their orders."""
        from payments.models import Transaction

        Transaction.objects.all().delete()
        Order.objects.all().delete()
        Offer.objects.all().delete()
        User.objects.filter(username__regex=r'^(customer|agent)\d+$').delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_settings(self):
        business = BusinessSettings.load()
        business.upi_id = business.upi_id or 'pizzashop@oksbi'
        business.merchant_name = business.merchant_name or 'Pizza Shop'
        business.merchant_code = business.merchant_code or 'PIZZASHP001'
        business.save()
        self.stdout.write(self.style.SUCCESS(f'Business settings: {business}'))

    def _create_admin(self):
        admin, created = User.objects.get_or_create(
            username='admin',
            defaults={'role': User.Role.ADMIN, 'is_staff': True, 'is_superuser': True},
        )
        if created:
            admin.set_password(DEFAULT_PASSWORD)
            admin.save()
            self.stdout.write('  Created admin user')

    def _create_users(self, prefix, role, count):
        users = []
        for i in range(1, count + 1):
            user, created = User.objects.get_or_create(
                username=f'{prefix}{i}',
                defaults={
                    'role': role,
                    'first_name': prefix.title(),
                    'last_name': str(i),
                    'phone': f'98{random.randint(10000000, 99999999)}',
                    'is_online': role == User.Role.DELIVERY,
                    'is_approved': True,
                },
            )
            if created:
                user.set_password(DEFAULT_PASSWORD)
                user.save()
            users.append(user)

        self.stdout.write(self.style.SUCCESS(f'Created {len(users)} {role} users'))
        return users

    def _create_offers(self):
        now = timezone.now()
        offers = [
            ('WELCOME10', 'Welcome offer', Offer.DiscountType.PERCENTAGE, '10', '300', '100'),
            ('FLAT50', 'Flat 50 off', Offer.DiscountType.FIXED, '50', '400', None),
            ('PIZZA20', 'Pizza party', Offer.DiscountType.PERCENTAGE, '20', '600', '150'),
        ]
        for code, title, kind, value, minimum, cap in offers:
            _, created = Offer.objects.get_or_create(
                code=code,
                defaults={
                    'title': title,
                    'discount_type': kind,
                    'discount_value': Decimal(value),
                    'min_order_value': Decimal(minimum),
                    'max_discount_amount': Decimal(cap) if cap else None,
                    'valid_from': now - timedelta(days=1),
                    'valid_until': now + timedelta(days=90),
                },
            )
            if created:
                self.stdout.write(f'  Created offer: {code}')

    def _random_items(self):
        items = []
        for name, price in random.sample(MENU, k=random.randint(1, 4)):
            item = {'name': name, 'quantity': random.randint(1, 3), 'base_price': price}
            if 'Pizza' in name:
                item['toppings'] = [
                    {'name': t, 'price': p} for t, p in random.sample(TOPPINGS, k=random.randint(0, 2))
                ]
            items.append(item)
        return items

    def _create_orders(self, customers, count):
        """Place sample orders; orders rejected by pricing rules are skipped."""
        if not customers:
            return

        placed = 0
        self.stdout.write(f'Placing {count} orders...')
        for _ in range(count):
            customer = random.choice(customers)
            city, state, zip_code = random.choice(CITIES)
            try:
                services.create_order(
                    Actor.from_user(customer),
                    items=self._random_items(),
                    address={
                        'street': f'{random.randint(1, 200)} MG Road',
                        'city': city,
                        'state': state,
                        'zip_code': zip_code,
                    },
                    payment_method=random.choice(Order.PaymentMethod.values),
                    discount_code=random.choice([None, None, 'WELCOME10', 'FLAT50']),
                )
                placed += 1
            except OrderingError as e:
                self.stdout.write(f'  Skipped order: {e.message}')

        self.stdout.write(self.style.SUCCESS(f'Placed {placed} orders'))
