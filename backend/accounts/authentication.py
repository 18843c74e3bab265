"""DRF authentication backed by the session registry."""

import logging

from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header

from common.exceptions import Unauthenticated
from accounts.sessions import get_session_registry

logger = logging.getLogger(__name__)


class SessionTokenAuthentication(BaseAuthentication):
    """
    Authenticate requests carrying `Authorization: Bearer <token>`.

    request.user becomes a Principal; request.auth is the raw token.
    """
    keyword = "Bearer"

    def authenticate(self, request):
        header = get_authorization_header(request).split()
        if not header:
            return None
        if header[0].decode().lower() != self.keyword.lower():
            return None
        if len(header) != 2:
            raise exceptions.AuthenticationFailed("invalid authorization header format")

        try:
            token = header[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed("invalid token encoding")

        try:
            principal = get_session_registry().validate(token)
        except Unauthenticated as exc:
            logger.debug("Token rejected: %s", exc)
            raise exceptions.AuthenticationFailed(str(exc), code=exc.code)

        return principal, token

    def authenticate_header(self, request):
        return self.keyword
