"""
Django Admin configuration for business settings and offers.
"""
from django.contrib import admin

from .models import BusinessSettings, Offer


@admin.register(BusinessSettings)
class BusinessSettingsAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'gst_percentage', 'apply_gst', 'delivery_fixed_charge',
        'free_delivery_threshold', 'apply_delivery_to_all_orders',
        'minimum_order_value', 'updated_at'
    ]
    readonly_fields = ['updated_at']

    def has_add_permission(self, request):
        return not BusinessSettings.objects.exists()


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = [
        'code', 'title', 'discount_type', 'discount_value', 'max_discount_amount',
        'active', 'valid_from', 'valid_until', 'usage_count', 'usage_limit'
    ]
    list_filter = ['active', 'discount_type']
    search_fields = ['code', 'title']
    readonly_fields = ['usage_count', 'created_at', 'updated_at']
