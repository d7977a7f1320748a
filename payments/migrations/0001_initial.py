from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('orders', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Transaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_number', models.CharField(db_index=True, max_length=32)),
                ('settlement', models.PositiveIntegerField(help_text='Order settlement_count this entry confirms')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('payment_method', models.CharField(choices=[('Cash on Delivery', 'Cash on Delivery'), ('UPI', 'UPI'), ('Online', 'Online')], max_length=20)),
                ('status', models.CharField(choices=[('Pending', 'Pending'), ('Completed', 'Completed'), ('Failed', 'Failed'), ('Refunded', 'Refunded')], db_index=True, default='Completed', max_length=20)),
                ('upi_id', models.CharField(blank=True, default='', max_length=100)),
                ('upi_merchant_name', models.CharField(blank=True, default='', max_length=100)),
                ('upi_merchant_code', models.CharField(blank=True, default='', max_length=50)),
                ('upi_reference', models.CharField(blank=True, default='', max_length=100)),
                ('gateway_order_id', models.CharField(blank=True, default='', max_length=100)),
                ('gateway_payment_id', models.CharField(blank=True, default='', max_length=100)),
                ('gateway_signature', models.CharField(blank=True, default='', max_length=255)),
                ('confirmed_by_name', models.CharField(max_length=150)),
                ('confirmed_by_role', models.CharField(max_length=20)),
                ('customer_name', models.CharField(max_length=150)),
                ('notes', models.TextField(blank=True, default='')),
                ('transaction_date', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('confirmed_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='confirmed_transactions', to=settings.AUTH_USER_MODEL)),
                ('customer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='payment_transactions', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='orders.order')),
            ],
            options={
                'verbose_name': 'Transaction',
                'verbose_name_plural': 'Transactions',
                'ordering': ['-transaction_date', '-id'],
            },
        ),
        migrations.AddConstraint(
            model_name='transaction',
            constraint=models.UniqueConstraint(fields=('order', 'settlement'), name='unique_order_settlement'),
        ),
        migrations.AddIndex(
            model_name='transaction',
            index=models.Index(fields=['confirmed_by', 'transaction_date'], name='txn_confirmer_date_idx'),
        ),
    ]
