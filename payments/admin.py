"""
Django Admin configuration for the transaction ledger. Entries are read-only.
"""
from django.contrib import admin
from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'order_number', 'settlement', 'amount', 'payment_method',
        'status', 'confirmed_by_name', 'transaction_date'
    ]
    list_filter = ['payment_method', 'status', 'confirmed_by_role', 'transaction_date']
    search_fields = ['order_number', 'customer_name', 'confirmed_by_name', 'upi_reference', 'gateway_payment_id']
    ordering = ['-transaction_date']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
