"""
Core ride lifecycle operations.

This module contains the ride state machine, the proximity search drivers use
to discover open rides, and the race-free accept.

Every transition is a single conditional UPDATE evaluated by the database
("set status=X only if status is currently Y"). The row is only read back
afterwards, to build the result or to explain why nothing matched. This keeps
concurrent accepts safe without any in-process locking: exactly one UPDATE can
see an open status.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from accounts.models import Account
from common.conf import ride_engine_setting
from common.exceptions import Forbidden, TransientStoreError, translate_store_errors
from common.geo_index import GeoIndex
from common.principal import ROLE_CUSTOMER, ROLE_DRIVER, Principal
from common.utils import calculate_distance, validate_point, validate_radius
from drivers.services import DriverLocation, PresenceTracker
from rides.models import Ride
from .exceptions import InvalidTransitionError, RideNotAvailableError, RideNotFoundError

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[Ride] = None
    message: str = ""
    already_applied: bool = False
    extra: Optional[Dict[str, Any]] = None


@dataclass
class RideView:
    """
    A ride as seen by one of its two parties.

    The customer gets the driver's account and live location; the driver
    gets the customer's account. Either may be missing.
    """
    ride: Ride
    driver_location: Optional[DriverLocation] = None
    driver_account: Optional[Account] = None
    customer_account: Optional[Account] = None

    @property
    def driver_distance_to_pickup_m(self) -> Optional[float]:
        if self.driver_location is None:
            return None
        return calculate_distance(
            self.driver_location.latitude,
            self.driver_location.longitude,
            self.ride.pickup_latitude,
            self.ride.pickup_longitude,
        )


class RideLifecycle:
    """
    Owns ride rows and the open-rides GEO index.

    Provides:
    - request_ride / find_nearby_open_rides
    - accept / start / complete / cancel
    - get_status and current-ride / history queries
    """

    def __init__(
        self,
        open_rides_index: Optional[GeoIndex] = None,
        presence: Optional[PresenceTracker] = None,
    ):
        self._open_rides = open_rides_index or GeoIndex(ride_engine_setting("OPEN_RIDES_GEO_KEY"))
        self._presence = presence or PresenceTracker()
        self.freshness_window = timedelta(seconds=ride_engine_setting("RIDE_FRESHNESS_SECONDS"))

    # ===================== Customer Operations =====================

    @translate_store_errors("ride request")
    def request_ride(self, principal: Principal, pickup: Point, dropoff: Point) -> RideResult:
        """
        Create a new ride in `requested` status and index its pickup point.

        Args:
            principal: The requesting customer
            pickup: (latitude, longitude) of the pickup
            dropoff: (latitude, longitude) of the dropoff

        Returns:
            RideResult with the created ride
        """
        _require_role(principal, ROLE_CUSTOMER, "request rides")
        pickup_lat, pickup_lng = validate_point(*pickup, label="pickup")
        dropoff_lat, dropoff_lng = validate_point(*dropoff, label="dropoff")

        # Row and index entry succeed or fail together
        with transaction.atomic():
            now = timezone.now()
            ride = Ride.objects.create(
                customer_id=principal.id,
                pickup_latitude=pickup_lat,
                pickup_longitude=pickup_lng,
                dropoff_latitude=dropoff_lat,
                dropoff_longitude=dropoff_lng,
                status=Ride.STATUS_REQUESTED,
                requested_at=now,
                updated_at=now,
            )
            self._open_rides.upsert(ride.id, pickup_lat, pickup_lng, now.timestamp())

        logger.info("Customer %s requested ride %s", principal.id, ride.id)
        return RideResult(
            success=True,
            ride=_reload(ride.id),
            message="Ride requested. Looking for nearby drivers.",
        )

    @translate_store_errors("ride status")
    def get_status(self, principal: Principal, ride_id: int) -> RideView:
        """
        Return the ride plus what its viewer may know about the other party.

        Customers see the assigned driver's account and latest location;
        drivers, including one who cancelled the ride, see the customer's
        account. These extras are best-effort: a missing row, a stale ping, or
        a store hiccup while looking them up just leaves them out.

        Raises:
            RideNotFoundError: If the ride does not exist
            Forbidden: If the principal is neither its customer nor its driver
        """
        ride = _reload(ride_id)
        if principal.is_customer and ride.customer_id != principal.id:
            raise Forbidden(f"ride {ride_id} belongs to another customer")
        if principal.is_driver and principal.id not in (ride.driver_id, ride.cancelled_driver_id):
            raise Forbidden(f"ride {ride_id} is not assigned to you")

        view = RideView(ride=ride)
        if principal.is_driver:
            view.customer_account = _account(ride.customer_id, ROLE_CUSTOMER)
        elif ride.driver_id is not None:
            view.driver_account = _account(ride.driver_id, ROLE_DRIVER)
            try:
                view.driver_location = self._presence.get_location(ride.driver_id)
            except TransientStoreError:
                logger.warning("Driver location unavailable for ride %s", ride_id, exc_info=True)

        return view

    @translate_store_errors("current ride")
    def current_ride_for_customer(self, principal: Principal) -> Optional[Ride]:
        """Customer's most recent non-terminal ride."""
        _require_role(principal, ROLE_CUSTOMER, "track rides")
        return (
            Ride.objects.filter(customer_id=principal.id)
            .exclude(status__in=Ride.TERMINAL_STATUSES)
            .order_by("-requested_at", "-id")
            .first()
        )

    # ===================== Driver Operations =====================

    @translate_store_errors("nearby rides")
    def find_nearby_open_rides(
        self,
        lat: float,
        lng: float,
        radius_meters: float,
        limit: Optional[int] = None,
    ) -> List[Ride]:
        """
        Open rides with a pickup inside the radius, nearest first.

        A ride qualifies when its status is requested/pending AND it was
        updated within the freshness window AND its pickup is within
        `radius_meters`. Each returned ride carries a `distance_m` attribute.
        """
        lat, lng = validate_point(lat, lng)
        radius_meters = validate_radius(radius_meters)
        limit = clamp_limit(limit)
        cutoff = timezone.now() - self.freshness_window

        def still_open(ride_ids):
            return set(
                Ride.objects.filter(
                    id__in=ride_ids,
                    status__in=Ride.OPEN_STATUSES,
                    updated_at__gte=cutoff,
                ).values_list("id", flat=True)
            )

        hits = self._open_rides.query(
            lat, lng, radius_meters, limit,
            min_timestamp=cutoff.timestamp(),
            extra_filter=still_open,
        )
        rides = Ride.objects.filter(
            id__in=[hit.owner_id for hit in hits],
            status__in=Ride.OPEN_STATUSES,
            updated_at__gte=cutoff,
        ).in_bulk()

        nearby = []
        for hit in hits:
            ride = rides.get(hit.owner_id)
            if ride is None:
                # Taken between the index query and the load
                continue
            ride.distance_m = hit.distance_m
            nearby.append(ride)

        logger.debug(
            "Found %d open rides within %.0fm of (%s, %s) (limit %d)",
            len(nearby), radius_meters, lat, lng, limit,
        )
        return nearby

    @translate_store_errors("ride accept")
    def accept(self, principal: Principal, ride_id: int) -> RideResult:
        """
        Assign an open ride to a driver.

        Exactly one of any number of concurrent callers wins: the guard
        `status IN (requested, pending)` is part of the UPDATE itself.

        Raises:
            RideNotFoundError: If the ride does not exist
            RideNotAvailableError: If another driver got it first, or it is closed
        """
        _require_role(principal, ROLE_DRIVER, "accept rides")
        now = timezone.now()
        updated = Ride.objects.filter(id=ride_id, status__in=Ride.OPEN_STATUSES).update(
            status=Ride.STATUS_ACCEPTED,
            driver_id=principal.id,
            accepted_at=now,
            updated_at=now,
        )
        ride = _reload(ride_id)

        if updated:
            self._retire_from_index(ride_id)
            logger.info("Driver %s accepted ride %s", principal.id, ride_id)
            return RideResult(
                success=True,
                ride=ride,
                message="Ride accepted. Navigate to pickup location.",
            )

        if ride.driver_id == principal.id and ride.status in Ride.ASSIGNED_STATUSES:
            return _already(ride, "Ride already accepted by you")

        logger.warning(
            "Driver %s could not accept ride %s (status=%s)", principal.id, ride_id, ride.status
        )
        raise RideNotAvailableError(ride_id, ride.status)

    @translate_store_errors("ride start")
    def start(self, principal: Principal, ride_id: int) -> RideResult:
        """Move an accepted ride to started. Only the assigned driver may start it."""
        _require_role(principal, ROLE_DRIVER, "start rides")
        now = timezone.now()
        updated = Ride.objects.filter(
            id=ride_id, status=Ride.STATUS_ACCEPTED, driver_id=principal.id
        ).update(status=Ride.STATUS_STARTED, started_at=now, updated_at=now)
        return self._driver_result(principal, ride_id, updated, Ride.STATUS_STARTED, "Ride started")

    @translate_store_errors("ride complete")
    def complete(self, principal: Principal, ride_id: int) -> RideResult:
        """Move a started ride to completed. Only the assigned driver may complete it."""
        _require_role(principal, ROLE_DRIVER, "complete rides")
        now = timezone.now()
        updated = Ride.objects.filter(
            id=ride_id, status=Ride.STATUS_STARTED, driver_id=principal.id
        ).update(status=Ride.STATUS_COMPLETED, completed_at=now, updated_at=now)
        return self._driver_result(principal, ride_id, updated, Ride.STATUS_COMPLETED, "Ride completed")

    @translate_store_errors("current ride")
    def current_ride_for_driver(self, principal: Principal) -> Optional[Ride]:
        """Driver's ride in progress (accepted or started), if any."""
        _require_role(principal, ROLE_DRIVER, "track rides")
        return (
            Ride.objects.filter(
                driver_id=principal.id,
                status__in=(Ride.STATUS_ACCEPTED, Ride.STATUS_STARTED),
            )
            .order_by("-accepted_at", "-id")
            .first()
        )

    # ===================== Shared Operations =====================

    @translate_store_errors("ride cancel")
    def cancel(self, principal: Principal, ride_id: int, reason: str = "") -> RideResult:
        """
        Cancel a non-terminal ride.

        Customers may cancel their own rides in any non-terminal status;
        drivers may cancel the ride assigned to them. The driver assignment is
        cleared and kept in `cancelled_driver_id`.
        """
        now = timezone.now()
        qs = Ride.objects.filter(id=ride_id).exclude(status__in=Ride.TERMINAL_STATUSES)
        if principal.is_customer:
            qs = qs.filter(customer_id=principal.id)
        else:
            qs = qs.filter(driver_id=principal.id)

        updated = qs.update(
            status=Ride.STATUS_CANCELLED,
            cancelled_at=now,
            updated_at=now,
            cancelled_driver_id=F("driver_id"),
            driver_id=None,
            cancellation_reason=reason or None,
        )
        ride = _reload(ride_id)

        if updated:
            self._retire_from_index(ride_id)
            logger.info("%s cancelled ride %s", principal, ride_id)
            return RideResult(success=True, ride=ride, message="Ride cancelled successfully")

        if principal.is_customer and ride.customer_id != principal.id:
            raise Forbidden(f"ride {ride_id} belongs to another customer")
        if principal.is_driver and principal.id not in (ride.driver_id, ride.cancelled_driver_id):
            raise Forbidden(f"ride {ride_id} is not assigned to you")
        if ride.status == Ride.STATUS_CANCELLED:
            return _already(ride, "Ride already cancelled")

        logger.warning("%s cannot cancel ride %s (status=%s)", principal, ride_id, ride.status)
        raise InvalidTransitionError(ride_id, ride.status, Ride.STATUS_CANCELLED)

    @translate_store_errors("ride history")
    def ride_history(self, principal: Principal, limit: int = 20) -> List[Ride]:
        """Most recent rides requested by a customer, or driven by a driver."""
        if principal.is_customer:
            qs = Ride.objects.filter(customer_id=principal.id)
        else:
            qs = Ride.objects.filter(Q(driver_id=principal.id) | Q(cancelled_driver_id=principal.id))
        return list(qs.order_by("-requested_at", "-id")[:clamp_limit(limit)])

    @translate_store_errors("open ride prune")
    def prune_open_ride_index(self) -> int:
        """Drop index entries for rides that can no longer surface in searches."""
        cutoff = timezone.now() - self.freshness_window
        return self._open_rides.prune(cutoff.timestamp())

    # ===================== Helper Functions =====================

    def _driver_result(self, principal, ride_id, updated, target, message) -> RideResult:
        ride = _reload(ride_id)
        if updated:
            logger.info("Driver %s moved ride %s to %s", principal.id, ride_id, target)
            return RideResult(success=True, ride=ride, message=message)

        if ride.driver_id is not None and ride.driver_id != principal.id:
            raise Forbidden(f"ride {ride_id} is not assigned to you")
        if ride.status == target and ride.driver_id == principal.id:
            return _already(ride, f"Ride already {target}")

        logger.warning(
            "Driver %s cannot move ride %s from %s to %s", principal.id, ride_id, ride.status, target
        )
        raise InvalidTransitionError(ride_id, ride.status, target)

    def _retire_from_index(self, ride_id: int):
        """Remove a closed ride from the open-rides index."""
        try:
            self._open_rides.remove(ride_id)
        except TransientStoreError:
            # The status filter still hides it; the entry ages out via prune
            logger.warning("Could not remove ride %s from open index", ride_id, exc_info=True)


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a result limit to [1, NEARBY_MAX_LIMIT], defaulting when unset."""
    if limit is None:
        return ride_engine_setting("NEARBY_DEFAULT_LIMIT")
    return max(1, min(int(limit), ride_engine_setting("NEARBY_MAX_LIMIT")))


def _reload(ride_id: int) -> Ride:
    try:
        return Ride.objects.get(id=ride_id)
    except Ride.DoesNotExist:
        raise RideNotFoundError(f"ride {ride_id} not found")


def _account(account_id: int, role: str) -> Optional[Account]:
    try:
        with translate_store_errors("account lookup"):
            return Account.objects.filter(id=account_id, role=role).first()
    except TransientStoreError:
        logger.warning("Account %s:%s unavailable", role, account_id, exc_info=True)
        return None


def _already(ride: Ride, message: str) -> RideResult:
    return RideResult(success=True, ride=ride, message=message, already_applied=True)


def _require_role(principal: Principal, role: str, action: str):
    if principal.role != role:
        raise Forbidden(f"only {role}s can {action}")


def get_ride_lifecycle() -> RideLifecycle:
    """Build a RideLifecycle on the shared Redis client."""
    return RideLifecycle()
