from django.contrib import admin
from accounts.models import Account, OTPRecord


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """Admin panel for customer and driver accounts"""

    list_display = [
        "id",
        "name",
        "phone_number",
        "role",
        "vehicle_number",
        "created_at",
    ]

    list_filter = [
        "role",
        "created_at",
    ]

    search_fields = [
        "name",
        "phone_number",
        "vehicle_number",
    ]

    ordering = ("-created_at",)


@admin.register(OTPRecord)
class OTPRecordAdmin(admin.ModelAdmin):
    """Read-only view of the OTP audit trail"""

    list_display = [
        "phone",
        "purpose",
        "is_verified",
        "is_expired",
        "expires_at",
        "verified_at",
        "created_at",
    ]

    list_filter = [
        "purpose",
        "is_verified",
        "is_expired",
    ]

    search_fields = [
        "phone",
    ]

    # OTP codes are never shown in the admin
    exclude = ["code"]
    readonly_fields = list_display

    ordering = ("-created_at",)
