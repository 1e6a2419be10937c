"""
OAuth 2.0 protocol errors (RFC 6749 section 5.2 and 4.1.2.1).

Author: OAuthKeeper Team
Date: 2026-02-03
"""

from typing import Optional


class OAuthError(Exception):
    """Base exception for OAuth errors."""

    status_code = 400

    def __init__(self, error: str, error_description: Optional[str] = None, status_code: Optional[int] = None):
        self.error = error
        self.error_description = error_description
        if status_code is not None:
            self.status_code = status_code
        super().__init__(error_description or error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.error_description:
            body["error_description"] = self.error_description
        return body


class InvalidRequestError(OAuthError):
    """Raised when a required parameter is missing or malformed."""

    def __init__(self, description: str = "Invalid request"):
        super().__init__("invalid_request", description)


class InvalidClientError(OAuthError):
    """Raised when client authentication fails.

    ``basic_auth`` marks failures of credentials sent in an Authorization
    header; those answer 401 with a ``WWW-Authenticate`` challenge.
    """

    def __init__(self, description: str = "Client authentication failed", basic_auth: bool = False):
        super().__init__("invalid_client", description, status_code=401 if basic_auth else 400)
        self.basic_auth = basic_auth


class InvalidGrantError(OAuthError):
    """Raised when an authorization code, refresh token or user credential is invalid."""

    def __init__(self, description: str = "Invalid grant"):
        super().__init__("invalid_grant", description)


class UnauthorizedClientError(OAuthError):
    """Raised when a client is not allowed to use the requested grant."""

    def __init__(self, description: str = "Client is not authorized to use this grant type"):
        super().__init__("unauthorized_client", description)


class UnsupportedGrantTypeError(OAuthError):
    def __init__(self, description: str = "Unsupported grant type"):
        super().__init__("unsupported_grant_type", description)


class UnsupportedResponseTypeError(OAuthError):
    def __init__(self, description: str = "Unsupported response type"):
        super().__init__("unsupported_response_type", description)


class AccessDeniedError(OAuthError):
    """Raised when the resource owner denies the request."""

    def __init__(self, description: str = "Access denied"):
        super().__init__("access_denied", description)


class InvalidScopeError(OAuthError):
    """Raised when requested scope is invalid."""

    def __init__(self, description: str = "Invalid scope"):
        super().__init__("invalid_scope", description)


class InvalidTokenError(OAuthError):
    """Raised when a bearer token is missing, unknown or expired."""

    def __init__(self, description: str = "Invalid token"):
        super().__init__("invalid_token", description, status_code=401)


class ServerError(OAuthError):
    """Raised when the credential store is unavailable."""

    def __init__(self, description: str = "Server error"):
        super().__init__("server_error", description, status_code=503)


class LoginFailed(Exception):
    """Login form rejected; the page is rendered again with ``message``."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
