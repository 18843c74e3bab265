from django.contrib import admin
from drivers.models import DriverPresence


@admin.register(DriverPresence)
class DriverPresenceAdmin(admin.ModelAdmin):
    """Admin panel for driver presence rows"""

    list_display = [
        "driver_id",
        "is_online",
        "latitude",
        "longitude",
        "last_ping_at",
        "went_online_at",
    ]

    list_filter = [
        "is_online",
        "last_ping_at",
    ]

    search_fields = [
        "driver_id",
    ]

    readonly_fields = [
        "last_ping_at",
        "went_online_at",
        "updated_at",
    ]

    ordering = ("-last_ping_at",)
