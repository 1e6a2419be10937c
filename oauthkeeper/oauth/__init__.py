"""
OAuth 2.0 protocol core: minting, scope checks, password hashing, state
carriers and protocol errors.

The grant engine (``oauthkeeper.oauth.grants``) and the authentication gate
(``oauthkeeper.oauth.gate``) are imported from their modules directly.
"""

from .exceptions import (
    OAuthError,
    InvalidRequestError,
    InvalidClientError,
    InvalidGrantError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
    AccessDeniedError,
    InvalidScopeError,
    InvalidTokenError,
    ServerError,
    LoginFailed,
)
from .minting import generate_token, generate_client_secret, generate_id
from .passwords import PasswordHasher
from .scope import validate_scope, verify_scope
from .state import StateSigner

__all__ = [
    "OAuthError",
    "InvalidRequestError",
    "InvalidClientError",
    "InvalidGrantError",
    "UnauthorizedClientError",
    "UnsupportedGrantTypeError",
    "UnsupportedResponseTypeError",
    "AccessDeniedError",
    "InvalidScopeError",
    "InvalidTokenError",
    "ServerError",
    "LoginFailed",
    "generate_token",
    "generate_client_secret",
    "generate_id",
    "PasswordHasher",
    "validate_scope",
    "verify_scope",
    "StateSigner",
]
