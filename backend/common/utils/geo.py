"""
Geographic utility functions.

This module provides the distance calculation and the coordinate checks used
throughout the application.
"""

from math import radians, cos, sin, asin, sqrt

from common.exceptions import ValidationError


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    r = 6371000  # Earth's radius in meters
    return c * r


def validate_point(lat, lng, label: str = "point") -> tuple:
    """
    Check a latitude/longitude pair and return it as floats.

    Raises:
        ValidationError: If either value is missing or out of range
    """
    if lat is None or lng is None:
        raise ValidationError(f"{label} latitude and longitude are required")
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} coordinates must be numbers")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"{label} latitude must be between -90 and 90")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError(f"{label} longitude must be between -180 and 180")
    return lat, lng


def validate_radius(radius_m) -> float:
    try:
        radius_m = float(radius_m)
    except (TypeError, ValueError):
        raise ValidationError("radius must be a number")
    if radius_m <= 0:
        raise ValidationError("radius must be greater than 0")
    return radius_m
