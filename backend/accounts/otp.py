"""
One-time password issue and verification.

Codes live in two places:
- Redis (`otp:{phone}`, TTL = OTP window): the authority while present
- OTPRecord rows: audit trail, and the fallback when Redis misses or is down

A Redis outage therefore slows verification down but does not break it.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from common.conf import ride_engine_setting
from common.exceptions import TransientStoreError, translate_store_errors
from common.fast_kv import FastKV
from accounts.models import OTPRecord

logger = logging.getLogger(__name__)


class OTPAuthenticator:
    """Issues, verifies and invalidates phone OTPs."""

    def __init__(self, kv: Optional[FastKV] = None, ttl: Optional[timedelta] = None):
        self._kv = kv or FastKV()
        self.ttl = ttl or timedelta(seconds=ride_engine_setting("OTP_TTL_SECONDS"))
        self.length = ride_engine_setting("OTP_LENGTH")

    def _key(self, phone: str) -> str:
        return f"{ride_engine_setting('OTP_KEY_PREFIX')}{phone}"

    def generate_code(self) -> str:
        fixed = ride_engine_setting("OTP_FIXED_CODE")
        if settings.DEBUG and fixed:
            return str(fixed)
        return f"{secrets.randbelow(10 ** self.length):0{self.length}d}"

    def issue(self, phone: str, purpose: str) -> str:
        """
        Generate a code, store it in Redis and write the audit record.

        Raises:
            TransientStoreError: If the Redis write fails. A failed audit
                write is only logged.
        """
        code = self.generate_code()
        expires_at = timezone.now() + self.ttl

        # The purpose travels with the code so a login OTP for one role
        # cannot be redeemed for another
        self._kv.set(self._key(phone), f"{purpose}:{code}", self.ttl)

        try:
            with transaction.atomic():
                OTPRecord.objects.create(
                    phone=phone,
                    code=code,
                    purpose=purpose,
                    expires_at=expires_at,
                )
        except DatabaseError:
            logger.exception("Failed to save OTP audit record for %s", phone)

        logger.info("Issued %s OTP for %s", purpose, phone)
        return code

    def verify(self, phone: str, code: str, purpose: Optional[str] = None) -> bool:
        """
        Check a code. Codes are single-use: a second call with the same code
        after a success returns False. When `purpose` is given, a code issued
        for another purpose is rejected.

        Raises:
            TransientStoreError: If the code matched but could not be marked
                used. Retrying is safe: the retry goes through the audit
                store's conditional update, which succeeds at most once.
        """
        key = self._key(phone)
        try:
            stored = self._kv.get(key)
        except TransientStoreError:
            logger.warning("OTP fast path unavailable for %s, using audit store", phone)
            return self._verify_durable(phone, code, purpose)

        if stored is None:
            return self._verify_durable(phone, code, purpose)

        stored_purpose, _, stored_code = stored.rpartition(":")
        if not secrets.compare_digest(stored_code, code):
            return False
        if purpose is not None and stored_purpose != purpose:
            logger.warning("OTP for %s issued for %s, not %s", phone, stored_purpose, purpose)
            return False

        # Only the caller whose delete removed the key gets the success
        if not self._kv.delete(key):
            return False

        # Propagates on failure; the unverified record keeps the code usable once
        self._mark_verified(phone, code, purpose)
        return True

    @translate_store_errors("otp fallback verify")
    def _verify_durable(self, phone: str, code: str, purpose: Optional[str] = None) -> bool:
        if not self._mark_verified(phone, code, purpose):
            logger.info("OTP verification failed for %s", phone)
            return False
        logger.info("OTP for %s verified from audit store", phone)
        return True

    @translate_store_errors("otp audit update")
    def _mark_verified(self, phone: str, code: str, purpose: Optional[str] = None) -> bool:
        """Flip the newest live matching record to verified, at most once."""
        now = timezone.now()
        records = OTPRecord.objects.filter(
            phone=phone,
            code=code,
            is_verified=False,
            is_expired=False,
            expires_at__gt=now,
        )
        if purpose is not None:
            records = records.filter(purpose=purpose)
        record = records.order_by("-created_at", "-id").first()
        if record is None:
            return False
        updated = OTPRecord.objects.filter(pk=record.pk, is_verified=False).update(
            is_verified=True, verified_at=now
        )
        return updated == 1

    @translate_store_errors("otp invalidate")
    def invalidate(self, phone: str) -> int:
        """Drop the live code and expire every outstanding audit record."""
        self._kv.delete(self._key(phone))
        return OTPRecord.objects.filter(
            phone=phone, is_verified=False, is_expired=False
        ).update(is_expired=True)

    @translate_store_errors("otp cleanup")
    def cleanup(self, older_than) -> int:
        """Delete audit records that expired before `older_than`."""
        deleted, _ = OTPRecord.objects.filter(expires_at__lt=older_than).delete()
        return deleted


def get_otp_authenticator() -> OTPAuthenticator:
    return OTPAuthenticator()
