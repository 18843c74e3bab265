"""
Services package - Business logic layer.

This package contains the business logic that operates on Django models but
is decoupled from the HTTP layer.

Modules:
    - ride_management: Ride lifecycle, nearby-ride discovery and race-free accept
"""

from .ride_management import (
    RideLifecycle,
    RideResult,
    RideView,
    get_ride_lifecycle,
    InvalidTransitionError,
    RideNotAvailableError,
    RideNotFoundError,
)

__all__ = [
    "RideLifecycle",
    "RideResult",
    "RideView",
    "get_ride_lifecycle",
    "InvalidTransitionError",
    "RideNotAvailableError",
    "RideNotFoundError",
]
