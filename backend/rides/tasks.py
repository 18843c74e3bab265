"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def prune_open_ride_index():
    """
    Drop open-ride GEO entries older than the ride freshness window.

    Searches already ignore them; this only keeps the index small.
    """
    from services.ride_management import get_ride_lifecycle

    pruned = get_ride_lifecycle().prune_open_ride_index()
    logger.info(f"Pruned {pruned} stale open-ride index entries")
    return pruned
