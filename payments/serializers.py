"""
Serializers for the transaction ledger and payment updates.
"""
from rest_framework import serializers

from orders.models import Order
from .models import Transaction


class TransactionSerializer(serializers.ModelSerializer):
    """Read-only ledger entry."""
    upi_details = serializers.SerializerMethodField()
    gateway_details = serializers.SerializerMethodField()

    class Meta:
        model = Transaction
        fields = [
            'id', 'order', 'order_number', 'settlement', 'amount', 'payment_method',
            'status', 'upi_details', 'gateway_details',
            'confirmed_by', 'confirmed_by_name', 'confirmed_by_role',
            'customer', 'customer_name', 'notes', 'transaction_date', 'created_at'
        ]
        read_only_fields = fields

    def get_upi_details(self, obj):
        if not (obj.upi_id or obj.upi_reference):
            return None
        return {
            'upi_id': obj.upi_id,
            'merchant_name': obj.upi_merchant_name,
            'merchant_code': obj.upi_merchant_code,
            'reference': obj.upi_reference,
        }

    def get_gateway_details(self, obj):
        if not obj.gateway_payment_id:
            return None
        return {
            'gateway_order_id': obj.gateway_order_id,
            'gateway_payment_id': obj.gateway_payment_id,
        }


class PaymentSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = ['id', 'order_number', 'status', 'payment_method', 'payment_status', 'total']


class UpiDetailsSerializer(serializers.Serializer):
    upi_id = serializers.CharField(max_length=100, required=False, allow_blank=True)
    merchant_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    merchant_code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    reference = serializers.CharField(max_length=100, required=False, allow_blank=True)


class PaymentUpdateSerializer(serializers.Serializer):
    """
    Request format for PUT .../payment/

    {
        "payment_status": "Completed",
        "payment_method": "Cash on Delivery",
        "payment_details": {"gateway_order_id": "...", "gateway_payment_id": "..."},
        "status": "Delivered",
        "note": "Cash collected",
        "create_transaction": false,
        "upi": {"reference": "..."}
    }
    """
    payment_status = serializers.ChoiceField(choices=Order.PaymentStatus.choices, required=False)
    payment_method = serializers.ChoiceField(choices=Order.PaymentMethod.choices, required=False)
    payment_details = serializers.DictField(required=False)
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    note = serializers.CharField(max_length=255, required=False, allow_blank=True)
    create_transaction = serializers.BooleanField(required=False, default=False)
    upi = UpiDetailsSerializer(required=False)


class TransactionCreateSerializer(serializers.Serializer):
    """Explicit ledger posting by the delivery agent who collected the payment."""
    order_id = serializers.IntegerField(min_value=1)
    payment_method = serializers.ChoiceField(choices=Order.PaymentMethod.choices, required=False)
    note = serializers.CharField(max_length=255, required=False, allow_blank=True)
    upi = UpiDetailsSerializer(required=False)


class DateRangeSerializer(serializers.Serializer):
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs['start_date'] > attrs['end_date']:
            raise serializers.ValidationError("start_date must not be after end_date")
        return attrs
