"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - Requesting rides
    - Discovering nearby open rides
    - Accepting/starting/completing rides
    - Cancelling rides
    - Querying ride status
"""

from .ride_lifecycle import (
    RideLifecycle,
    RideResult,
    RideView,
    clamp_limit,
    get_ride_lifecycle,
)

from .exceptions import (
    InvalidTransitionError,
    RideNotAvailableError,
    RideNotFoundError,
)

__all__ = [
    # Lifecycle
    "RideLifecycle",
    "RideResult",
    "RideView",
    "clamp_limit",
    "get_ride_lifecycle",
    # Exceptions
    "InvalidTransitionError",
    "RideNotAvailableError",
    "RideNotFoundError",
]
