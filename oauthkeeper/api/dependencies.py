"""
FastAPI dependencies.

The grant engine, store and gate live on ``app.state`` (set by
``create_app``) and reach handlers only through these dependencies.
"""

from typing import Iterable, Optional

from fastapi import Header, Request

from oauthkeeper.core.config_manager import OAuthKeeperConfig
from oauthkeeper.oauth.gate import AuthGate, NotAuthenticated, NotAuthorized, parse_bearer
from oauthkeeper.oauth.grants import OAuthServer
from oauthkeeper.storage.interface import CredentialStore

from .errors import AuthenticationError, PermissionDeniedError


def get_server(request: Request) -> OAuthServer:
    return request.app.state.oauth_server


def get_store(request: Request) -> CredentialStore:
    return request.app.state.store


def get_gate(request: Request) -> AuthGate:
    return request.app.state.gate


def get_config(request: Request) -> OAuthKeeperConfig:
    return request.app.state.config


async def require_token(request: Request, authorization: Optional[str] = Header(default=None)):
    """Authenticate the bearer token; resolves to the token record."""
    try:
        return await get_gate(request).authenticate(parse_bearer(authorization))
    except NotAuthenticated as e:
        raise AuthenticationError(str(e)) from e


def require_roles(roles: Optional[Iterable[str]] = None):
    """
    Build a dependency that authorizes the bearer token's user.

    Args:
        roles: At least one of these roles is required; None accepts any
               active user

    Returns:
        Dependency resolving to the authorized ``User``
    """
    role_set = frozenset(roles) if roles is not None else None

    async def dependency(request: Request, authorization: Optional[str] = Header(default=None)):
        try:
            _, user = await get_gate(request).authorize(parse_bearer(authorization), role_set)
        except NotAuthenticated as e:
            raise AuthenticationError(str(e)) from e
        except NotAuthorized as e:
            raise PermissionDeniedError(str(e)) from e
        return user

    return dependency


require_user = require_roles()
