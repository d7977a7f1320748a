"""
Django Admin configuration for platform users.
"""
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class PlatformUserAdmin(UserAdmin):
    list_display = ['username', 'email', 'role', 'phone', 'is_online', 'is_approved', 'is_active']
    list_filter = ['role', 'is_online', 'is_approved', 'is_active']
    search_fields = ['username', 'email', 'first_name', 'last_name', 'phone']
    fieldsets = UserAdmin.fieldsets + (
        ('Platform', {'fields': ('role', 'phone', 'is_online', 'is_approved')}),
    )
