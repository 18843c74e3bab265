"""DRF glue: renders ride engine errors as JSON responses."""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .exceptions import (
    ConflictError,
    Forbidden,
    NotFound,
    RideEngineError,
    TransientStoreError,
    Unauthenticated,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (TransientStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def ride_engine_exception_handler(exc, context):
    """Map RideEngineError subclasses to HTTP responses, defer the rest to DRF."""
    if not isinstance(exc, RideEngineError):
        return exception_handler(exc, context)

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_class, code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            status_code = code
            break

    if isinstance(exc, TransientStoreError):
        logger.warning("Store unavailable while handling %s: %s", context.get("view"), exc)

    return Response({"error": str(exc), "code": exc.code}, status=status_code)
