from django.db import models
from django.utils import timezone


class Ride(models.Model):
    """A ride request and its lifecycle. Rows are never deleted."""

    STATUS_REQUESTED = 'requested'
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_STARTED = 'started'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_REQUESTED, 'Requested'),
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_STARTED, 'Started'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    OPEN_STATUSES = (STATUS_REQUESTED, STATUS_PENDING)
    ASSIGNED_STATUSES = (STATUS_ACCEPTED, STATUS_STARTED, STATUS_COMPLETED)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

    # Principals
    customer_id = models.BigIntegerField(db_index=True)
    driver_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    cancelled_driver_id = models.BigIntegerField(null=True, blank=True)

    # Pickup location
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)

    # Dropoff location
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_REQUESTED)
    fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Timestamps
    requested_at = models.DateTimeField(default=timezone.now)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    cancellation_reason = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'rides'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['status', 'updated_at'], name='ride_status_updated_idx'),
        ]

    def __str__(self):
        return f"Ride #{self.id} - customer {self.customer_id} - {self.status}"
