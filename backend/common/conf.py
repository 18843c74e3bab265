"""
Ride engine tunables.

Defaults live here; any key can be overridden through the RIDE_ENGINE dict in
Django settings.
"""

from django.conf import settings

DEFAULTS = {
    # Redis key names
    "DRIVERS_GEO_KEY": "drivers:geo",        # GEOADD key for driver positions
    "OPEN_RIDES_GEO_KEY": "rides:open:geo",  # GEOADD key for open ride pickups
    "OTP_KEY_PREFIX": "otp:",
    "SESSION_KEY_PREFIX": "session:",

    # Freshness windows (seconds)
    "DRIVER_FRESHNESS_SECONDS": 120,   # Driver counts as online for 2 min after a ping
    "RIDE_FRESHNESS_SECONDS": 300,     # Open rides stop surfacing after 5 min

    # Nearby ride search
    "NEARBY_DEFAULT_LIMIT": 50,
    "NEARBY_MAX_LIMIT": 100,
    "GEO_OVERFETCH_FACTOR": 3,

    # OTP
    "OTP_TTL_SECONDS": 120,
    "OTP_LENGTH": 6,
    "OTP_FIXED_CODE": None,            # Only honoured when DEBUG is on

    # Sessions
    "SESSION_TTL_SECONDS": 86400,
}


def ride_engine_setting(name: str):
    """Return a RIDE_ENGINE setting, falling back to DEFAULTS."""
    overrides = getattr(settings, "RIDE_ENGINE", {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
