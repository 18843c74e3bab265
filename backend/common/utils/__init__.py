"""Common utility functions."""

from .geo import calculate_distance, validate_point, validate_radius

__all__ = [
    "calculate_distance",
    "validate_point",
    "validate_radius",
]
