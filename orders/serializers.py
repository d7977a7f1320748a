"""
Serializers for order models and order API requests.
"""
from rest_framework import serializers

from .models import Order, OrderItem, StatusUpdate


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with captured prices and modifiers."""
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            'id', 'menu_item_id', 'name', 'quantity', 'unit_base_price',
            'unit_price', 'modifiers', 'special_instructions', 'line_total'
        ]


class StatusUpdateSerializer(serializers.ModelSerializer):
    timestamp = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = StatusUpdate
        fields = ['status', 'note', 'timestamp']


class OrderSerializer(serializers.ModelSerializer):
    """
    Full order representation: items, pricing breakdown, payment state and
    status history. Expects items and status_history to be prefetched.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    status_history = StatusUpdateSerializer(many=True, read_only=True)
    discount = serializers.SerializerMethodField()
    item_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer', 'customer_name', 'customer_phone',
            'status', 'delivery_agent', 'delivery_agent_name', 'estimated_delivery_time',
            'address', 'full_address', 'notes',
            'payment_method', 'payment_status', 'payment_details',
            'items', 'item_count',
            'subtotal', 'tax', 'tax_percentage', 'delivery_fee', 'discount', 'total',
            'applied_settings', 'rating', 'review_comment', 'status_history',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_discount(self, obj):
        discount = obj.discount
        return {
            'amount': str(discount['amount']),
            'percentage': str(discount['percentage']) if discount['percentage'] is not None else None,
            'code': discount['code'],
            'description': discount['description'],
        }


class OrderListSerializer(serializers.ModelSerializer):
    """Compact serializer for order listings."""
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer_name', 'status', 'delivery_agent_name',
            'payment_method', 'payment_status', 'total', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return sum(item.quantity for item in obj.items.all())
        return obj.item_count


class StatusChangeSerializer(serializers.ModelSerializer):
    """Order summary returned from a status transition."""
    status_history = StatusUpdateSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = ['id', 'order_number', 'status', 'estimated_delivery_time', 'status_history']


class OrderItemInputSerializer(serializers.Serializer):
    """
    One requested line. Prices come from the client's menu snapshot;
    `price` is accepted as an alias for `base_price`.
    """
    menu_item_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    name = serializers.CharField(max_length=200)
    quantity = serializers.IntegerField(min_value=1)
    base_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=0)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=0)
    customizations = serializers.ListField(child=serializers.JSONField(), required=False)
    add_ons = serializers.ListField(child=serializers.JSONField(), required=False)
    toppings = serializers.ListField(child=serializers.JSONField(), required=False)
    special_instructions = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs.get('base_price') is None and attrs.get('price') is None:
            raise serializers.ValidationError("Each item needs a base_price")
        return attrs


class AddressSerializer(serializers.Serializer):
    street = serializers.CharField(max_length=200)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    zip_code = serializers.CharField(max_length=20)
    landmark = serializers.CharField(max_length=200, required=False, allow_blank=True)


class OrderCreateSerializer(serializers.Serializer):
    """
    Request format for POST /api/orders/

    {
        "items": [
            {"name": "Margherita", "quantity": 2, "base_price": "249.00",
             "toppings": [{"name": "Olives", "price": "30.00"}]}
        ],
        "address": {"street": "...", "city": "...", "state": "...", "zip_code": "..."},
        "payment_method": "Cash on Delivery",
        "discount_code": "WELCOME10"
    }
    """
    items = OrderItemInputSerializer(many=True)
    address = AddressSerializer()
    payment_method = serializers.ChoiceField(choices=Order.PaymentMethod.choices)
    discount_code = serializers.CharField(max_length=40, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    payment_details = serializers.DictField(required=False)
    customer_phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    discounts = serializers.JSONField(required=False, allow_null=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")
        return value


class StatusUpdateRequestSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
    note = serializers.CharField(max_length=255, required=False, allow_blank=True)


class RatingSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    comment = serializers.CharField(required=False, allow_blank=True)


class AssignAgentSerializer(serializers.Serializer):
    delivery_agent_id = serializers.IntegerField(min_value=1, allow_null=True)
