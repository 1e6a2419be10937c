"""
Authentication and authorization gate for bearer tokens.

``authenticate`` resolves a bearer token to its record. ``authorize`` also
loads the bound user and checks it is still allowed in: an access token that
outlives its user's disablement does not authorize anything.

Author: OAuthKeeper Team
Date: 2026-02-06
"""

import logging
from typing import Iterable, Optional, Tuple

from oauthkeeper.models import ROLE_ADMIN, ROLE_DEV, ROLE_MANAGER, Token, User
from oauthkeeper.storage.interface import CredentialStore

logger = logging.getLogger(__name__)

ADMIN = frozenset({ROLE_ADMIN})
ADMIN_OR_MANAGER = frozenset({ROLE_ADMIN, ROLE_MANAGER})
ADMIN_OR_DEV = frozenset({ROLE_ADMIN, ROLE_DEV})


class GateError(Exception):
    """Base class for gate rejections."""


class NotAuthenticated(GateError):
    """Bearer token is absent, unknown or expired."""


class NotAuthorized(GateError):
    """Token is valid but its user may not perform the operation."""


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class AuthGate:
    """Resolves bearer tokens to tokens and users."""

    def __init__(self, store: CredentialStore):
        self.store = store

    async def authenticate(self, bearer: Optional[str]) -> Token:
        """
        Resolve a bearer token.

        Raises:
            NotAuthenticated: If the token is absent, unknown or expired
        """
        if not bearer:
            raise NotAuthenticated("Missing access token")
        token = await self.store.get_access_token(bearer)
        if token is None:
            raise NotAuthenticated("Invalid access token")
        if token.access_expired():
            raise NotAuthenticated("Access token expired")
        return token

    async def authorize(
        self,
        bearer: Optional[str],
        roles: Optional[Iterable[str]] = None,
    ) -> Tuple[Token, User]:
        """
        Resolve a bearer token to its user and check roles.

        Args:
            bearer: Access token from the Authorization header
            roles: If given, the user needs at least one of these roles, and
                   must also be validated

        Raises:
            NotAuthenticated: Token problems, or the token has no user
            NotAuthorized: User disabled, unvalidated, or missing the role
        """
        token = await self.authenticate(bearer)
        if token.user_id is None:
            raise NotAuthenticated("Access token is not bound to a user")

        user = await self.store.get_user(token.user_id)
        if user is None:
            raise NotAuthenticated("User no longer exists")
        if user.disabled:
            raise NotAuthorized("User is disabled")

        if roles is not None:
            if user.validated is None:
                raise NotAuthorized("User is not validated")
            if not any(user.has_role(role) for role in roles):
                logger.info(f"Denied user={user.user_id}: requires one of {sorted(roles)}")
                raise NotAuthorized("Insufficient role")

        return token, user
