"""Celery tasks for OTP housekeeping."""

from datetime import timedelta

from celery import shared_task
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)


@shared_task
def cleanup_expired_otps(days: int = 7):
    """Delete OTP audit records that expired more than `days` days ago."""
    from accounts.otp import get_otp_authenticator

    cutoff = timezone.now() - timedelta(days=days)
    deleted = get_otp_authenticator().cleanup(cutoff)
    logger.info(f"Cleaned up {deleted} expired OTP records")
    return deleted
