"""
Driver presence tracking.

A driver is "present" only while the stored row says online AND the last ping
is within the freshness window. That check is evaluated at read time from the
stored timestamp, so no background job is needed for correctness; the sweep
below only compacts storage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set

from django.db import IntegrityError, transaction
from django.db.models import Case, Q, Value, When, F
from django.utils import timezone

from common.conf import ride_engine_setting
from common.exceptions import translate_store_errors
from common.geo_index import GeoIndex
from common.utils import validate_point, validate_radius
from drivers.models import DriverPresence

logger = logging.getLogger(__name__)


@dataclass
class DriverLocation:
    """Driver location data."""
    driver_id: int
    latitude: float
    longitude: float
    last_ping_at: Optional[datetime] = None
    distance_meters: Optional[float] = None


class PresenceTracker:
    """
    Records driver pings and answers availability questions.

    Provides:
    - ping (upsert presence row + GEO index)
    - is_online / filter_online (read-time freshness check)
    - find_nearby_drivers, get_location
    - go_offline, sweep_stale
    """

    def __init__(self, geo_index: Optional[GeoIndex] = None, freshness_window: Optional[timedelta] = None):
        self._index = geo_index or GeoIndex(ride_engine_setting("DRIVERS_GEO_KEY"))
        self.freshness_window = freshness_window or timedelta(
            seconds=ride_engine_setting("DRIVER_FRESHNESS_SECONDS")
        )

    def _cutoff(self, now=None) -> datetime:
        return (now or timezone.now()) - self.freshness_window

    def _online(self, now=None):
        return DriverPresence.objects.filter(is_online=True, last_ping_at__gte=self._cutoff(now))

    # ---------------------- Pings ----------------------

    @translate_store_errors("presence ping")
    def ping(self, driver_id: int, lat: float, lng: float) -> DriverPresence:
        """
        Record a location ping. Unknown drivers get a row created.

        `went_online_at` is reset whenever the driver was offline or stale
        before this ping.
        """
        lat, lng = validate_point(lat, lng, "driver")
        now = timezone.now()

        updated = self._refresh(driver_id, lat, lng, now)
        if not updated:
            try:
                with transaction.atomic():
                    DriverPresence.objects.create(
                        driver_id=driver_id,
                        is_online=True,
                        last_ping_at=now,
                        went_online_at=now,
                        latitude=lat,
                        longitude=lng,
                        updated_at=now,
                    )
            except IntegrityError:
                # A concurrent first ping created the row
                self._refresh(driver_id, lat, lng, now)

        self._index.upsert(driver_id, lat, lng, now.timestamp())
        logger.debug("Driver %s pinged at (%s, %s)", driver_id, lat, lng)
        return DriverPresence.objects.get(driver_id=driver_id)

    def _refresh(self, driver_id: int, lat: float, lng: float, now: datetime) -> int:
        came_online = Q(is_online=False) | Q(last_ping_at__lt=self._cutoff(now))
        return DriverPresence.objects.filter(driver_id=driver_id).update(
            went_online_at=Case(When(came_online, then=Value(now)), default=F("went_online_at")),
            is_online=True,
            last_ping_at=now,
            latitude=lat,
            longitude=lng,
            updated_at=now,
        )

    @translate_store_errors("presence offline")
    def go_offline(self, driver_id: int) -> bool:
        """Mark a driver offline. Returns False if the driver had no presence row."""
        now = timezone.now()
        updated = DriverPresence.objects.filter(driver_id=driver_id).update(
            is_online=False, updated_at=now
        )
        self._index.remove(driver_id)
        if updated:
            logger.info("Driver %s went offline", driver_id)
        return bool(updated)

    # ---------------------- Availability ----------------------

    @translate_store_errors("presence lookup")
    def is_online(self, driver_id: int, now=None) -> bool:
        return self._online(now).filter(driver_id=driver_id).exists()

    @translate_store_errors("presence filter")
    def filter_online(self, driver_ids: Iterable[int], now=None) -> Set[int]:
        """Narrow a candidate list to the drivers that are online and fresh."""
        driver_ids = list(driver_ids)
        if not driver_ids:
            return set()
        return set(
            self._online(now)
            .filter(driver_id__in=driver_ids)
            .values_list("driver_id", flat=True)
        )

    @translate_store_errors("presence location")
    def get_location(self, driver_id: int) -> Optional[DriverLocation]:
        """Latest fresh location for a driver, or None when absent or stale."""
        presence = DriverPresence.objects.filter(driver_id=driver_id).first()
        if presence is None or not presence.is_fresh(self.freshness_window):
            return None
        return DriverLocation(
            driver_id=driver_id,
            latitude=float(presence.latitude),
            longitude=float(presence.longitude),
            last_ping_at=presence.last_ping_at,
        )

    def find_nearby_drivers(
        self,
        lat: float,
        lng: float,
        radius_meters: float = 3000,
        limit: int = 10,
    ) -> List[DriverLocation]:
        """
        Online drivers within `radius_meters` of a point, nearest first.

        Returns:
            List of DriverLocation objects sorted by distance
        """
        lat, lng = validate_point(lat, lng)
        radius_meters = validate_radius(radius_meters)
        hits = self._index.query(
            lat, lng, radius_meters, limit,
            min_timestamp=self._cutoff().timestamp(),
            extra_filter=self.filter_online,
        )
        return [
            DriverLocation(
                driver_id=hit.owner_id,
                latitude=hit.latitude,
                longitude=hit.longitude,
                distance_meters=hit.distance_m,
            )
            for hit in hits
        ]

    # ---------------------- Compaction ----------------------

    @translate_store_errors("presence sweep")
    def sweep_stale(self, now=None) -> int:
        """Delete presence rows (and GEO members) older than the freshness window."""
        cutoff = self._cutoff(now)
        deleted, _ = DriverPresence.objects.filter(last_ping_at__lt=cutoff).delete()
        pruned = self._index.prune(cutoff.timestamp())
        logger.info("Presence sweep removed %d rows and %d GEO members", deleted, pruned)
        return deleted


def get_presence_tracker() -> PresenceTracker:
    """Build a PresenceTracker on the shared Redis client."""
    return PresenceTracker()
