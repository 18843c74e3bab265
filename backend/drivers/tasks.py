"""Celery tasks for driver presence housekeeping."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def sweep_stale_presence():
    """
    Remove presence rows and GEO members whose last ping is older than the
    freshness window. Storage hygiene only: is_online already ignores them.
    """
    from drivers.services import get_presence_tracker

    removed = get_presence_tracker().sweep_stale()
    logger.info(f"Presence sweep removed {removed} stale driver rows")
    return removed
