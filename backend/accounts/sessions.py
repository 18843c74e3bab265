"""
Session tokens with server-side revocation.

Tokens are simplejwt access tokens carrying the principal id and role. A token
is only accepted while the identical string is pinned in Redis under
`session:{role}:{principal_id}`, so deleting that key logs the principal out
before the token's own expiry. Issuing a new token replaces the pin, which
also ends any older session for the same principal.
"""

import logging
from datetime import timedelta
from typing import Optional, Union

from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

from common.conf import ride_engine_setting
from common.exceptions import Revoked, Unauthenticated
from common.fast_kv import FastKV
from common.principal import ROLES, Principal

logger = logging.getLogger(__name__)

ROLE_CLAIM = "role"


class SessionRegistry:
    """Issues, validates and revokes pinned session tokens."""

    def __init__(self, kv: Optional[FastKV] = None):
        self._kv = kv or FastKV()

    @staticmethod
    def _key(principal_id: int, role: str) -> str:
        return f"{ride_engine_setting('SESSION_KEY_PREFIX')}{role}:{principal_id}"

    def issue(self, principal_id: int, role: str, ttl: Union[int, timedelta, None] = None) -> str:
        """Sign a token for the principal and pin it for the same lifetime."""
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        if ttl is None:
            ttl = ride_engine_setting("SESSION_TTL_SECONDS")
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)

        token = AccessToken()
        token[api_settings.USER_ID_CLAIM] = principal_id
        token[ROLE_CLAIM] = role
        token.set_exp(lifetime=ttl)
        raw = str(token)

        self._kv.set(self._key(principal_id, role), raw, ttl)
        logger.info("Issued session for %s:%s", role, principal_id)
        return raw

    def validate(self, raw: str) -> Principal:
        """
        Verify signature and expiry, then require the token to still be pinned.

        Raises:
            Unauthenticated: Bad signature, expired, or malformed claims
            Revoked: Signature is fine but the pin is gone or different
            TransientStoreError: Redis could not be reached
        """
        try:
            token = AccessToken(raw)
        except TokenError as exc:
            raise Unauthenticated(f"invalid token: {exc}") from exc

        principal_id = token.get(api_settings.USER_ID_CLAIM)
        role = token.get(ROLE_CLAIM)
        if principal_id is None or role not in ROLES:
            raise Unauthenticated("token is missing principal claims")

        try:
            principal = Principal(id=int(principal_id), role=role)
        except (TypeError, ValueError):
            raise Unauthenticated("token carries a malformed principal id")

        pinned = self._kv.get(self._key(principal.id, role))
        if pinned is None:
            raise Revoked("token expired or logged out")
        if pinned != raw:
            raise Revoked("token was superseded")
        return principal

    def revoke(self, principal_id: int, role: str) -> bool:
        """End the principal's session. Returns False if none was pinned."""
        revoked = self._kv.delete(self._key(principal_id, role))
        if revoked:
            logger.info("Revoked session for %s:%s", role, principal_id)
        return revoked


def get_session_registry() -> SessionRegistry:
    return SessionRegistry()
