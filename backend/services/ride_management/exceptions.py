"""Ride-specific exceptions, refining the shared error taxonomy."""

from common.exceptions import ConflictError, NotFound


class RideNotFoundError(NotFound):
    """Raised when a ride cannot be found."""
    code = "ride_not_found"


class InvalidTransitionError(ConflictError):
    """Raised when a ride is not in a legal source state for the operation."""
    code = "invalid_transition"

    def __init__(self, ride_id, current, attempted, detail=None):
        self.ride_id = ride_id
        self.current = current
        self.attempted = attempted
        message = f"ride {ride_id} is {current}; cannot move to {attempted}"
        if detail:
            message = f"ride {ride_id} is {current}; {detail}"
        super().__init__(message)


class RideNotAvailableError(InvalidTransitionError):
    """Raised when a ride was already taken or closed before it could be accepted."""
    code = "ride_not_available"

    def __init__(self, ride_id, current):
        super().__init__(ride_id, current, "accepted", detail="not in requested or pending status")
