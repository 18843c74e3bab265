from datetime import timedelta

from django.db import models
from django.utils import timezone


class DriverPresence(models.Model):
    """One row per driver: last ping, last known point and online flag."""

    driver_id = models.BigIntegerField(primary_key=True)

    is_online = models.BooleanField(default=True)
    last_ping_at = models.DateTimeField(default=timezone.now, db_index=True)
    went_online_at = models.DateTimeField(default=timezone.now)

    # Last known location
    latitude = models.DecimalField(max_digits=9, decimal_places=6)
    longitude = models.DecimalField(max_digits=9, decimal_places=6)

    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'driver_presence'
        indexes = [
            models.Index(fields=['is_online', 'last_ping_at'], name='presence_online_ping_idx'),
        ]

    def is_fresh(self, window: timedelta, now=None) -> bool:
        """Present iff online and pinged within `window` of `now`."""
        now = now or timezone.now()
        return self.is_online and now - self.last_ping_at <= window

    def __str__(self):
        state = "online" if self.is_online else "offline"
        return f"Driver {self.driver_id} - {state} - last ping {self.last_ping_at:%H:%M:%S}"
