"""
Django Admin configuration for order models.

Orders are changed through the services only, so the admin is read-mostly.
"""
from django.contrib import admin
from .models import Order, OrderItem, StatusUpdate


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['name', 'quantity', 'unit_base_price', 'modifiers', 'line_total']
    can_delete = False


class StatusUpdateInline(admin.TabularInline):
    model = StatusUpdate
    extra = 0
    readonly_fields = ['status', 'note', 'created_at']
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        'order_number', 'customer_name', 'status', 'payment_method',
        'payment_status', 'delivery_agent_name', 'total', 'created_at'
    ]
    list_filter = ['status', 'payment_method', 'payment_status', 'created_at']
    search_fields = ['order_number', 'customer_name', 'customer_phone']
    ordering = ['-created_at']
    readonly_fields = [
        'order_number', 'status', 'payment_status', 'settlement_count',
        'subtotal', 'tax', 'tax_percentage', 'delivery_fee', 'discount_amount',
        'discount_percentage', 'discount_code', 'total', 'applied_settings',
        'created_at', 'updated_at'
    ]
    raw_id_fields = ['customer', 'delivery_agent']
    inlines = [OrderItemInline, StatusUpdateInline]
