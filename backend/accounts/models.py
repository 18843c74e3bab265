from django.db import models
from django.utils import timezone

from common.principal import ROLE_CUSTOMER, ROLE_DRIVER


class Account(models.Model):
    """A customer or driver, identified by phone number. Logs in by OTP only."""
    ROLE_CHOICES = [
        (ROLE_CUSTOMER, 'Customer'),
        (ROLE_DRIVER, 'Driver'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    phone_number = models.CharField(max_length=20)
    name = models.CharField(max_length=100, blank=True)
    vehicle_number = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'accounts'
        constraints = [
            models.UniqueConstraint(
                fields=['phone_number', 'role'],
                name='unique_phone_role'
            )
        ]

    def __str__(self):
        return f"{self.name or self.phone_number} ({self.get_role_display()})"


class OTPRecord(models.Model):
    """Durable audit copy of an issued OTP; also the fallback verification source."""

    phone = models.CharField(max_length=20, db_index=True)
    code = models.CharField(max_length=10)
    purpose = models.CharField(max_length=30)

    is_verified = models.BooleanField(default=False)
    is_expired = models.BooleanField(default=False)
    expires_at = models.DateTimeField()
    verified_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'otp_records'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['phone', 'is_verified', 'is_expired'], name='otp_phone_state_idx'),
        ]

    def __str__(self):
        state = "verified" if self.is_verified else "expired" if self.is_expired else "pending"
        return f"OTP #{self.id} - {self.phone} - {self.purpose} - {state}"
