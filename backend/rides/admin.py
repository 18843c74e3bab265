"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Ride admin"""
    list_display = ['id', 'customer_id', 'driver_id', 'status', 'requested_at', 'accepted_at', 'completed_at']
    list_filter = ['status', 'requested_at']
    search_fields = ['id', 'customer_id', 'driver_id']
    readonly_fields = ['requested_at', 'accepted_at', 'started_at', 'completed_at', 'cancelled_at', 'updated_at']
    date_hierarchy = 'requested_at'
