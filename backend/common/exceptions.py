"""
Error taxonomy shared by every ride engine component.

Callers can tell "this ride is gone or taken" (ConflictError / NotFound,
expected during matching) apart from "something is broken"
(TransientStoreError, safe to retry with backoff).
"""

from contextlib import contextmanager

import redis
from django.db import InterfaceError, OperationalError


class RideEngineError(Exception):
    """Base class for all ride engine errors."""
    code = "error"


class ValidationError(RideEngineError):
    """Raised for bad coordinates, radii or missing fields. Never retried."""
    code = "validation_error"


class NotFound(RideEngineError):
    """Raised when a ride or driver cannot be found."""
    code = "not_found"


class Forbidden(RideEngineError):
    """Raised when the principal does not own the resource."""
    code = "forbidden"


class ConflictError(RideEngineError):
    """Raised when a state transition is not legal from the current status."""
    code = "conflict"


class Unauthenticated(RideEngineError):
    """Raised when a token or OTP cannot be verified."""
    code = "unauthenticated"


class Revoked(Unauthenticated):
    """Raised when a signed token is valid but no longer pinned server-side."""
    code = "revoked"


class TransientStoreError(RideEngineError):
    """Raised on storage timeouts or unavailability."""
    code = "store_unavailable"


@contextmanager
def translate_store_errors(operation: str = "store operation"):
    """
    Convert Redis and database I/O failures into TransientStoreError.

    Works as a context manager or as a decorator:

        @translate_store_errors("ride accept")
        def accept(...): ...
    """
    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
        raise TransientStoreError(f"{operation} failed: {exc}") from exc
    except (OperationalError, InterfaceError) as exc:
        raise TransientStoreError(f"{operation} failed: {exc}") from exc
