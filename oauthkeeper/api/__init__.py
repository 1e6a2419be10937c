"""
HTTP surface of OAuthKeeper: the ``/oauth2`` protocol endpoints and the
``/api`` management endpoints, with their error handlers and middleware.
"""

from .errors import (
    ApiError,
    AuthenticationError,
    ClientNotFoundError,
    LoginError,
    ParameterError,
    PermissionDeniedError,
    StoreUnavailableError,
    UnknownError,
    UserExistsError,
    UserNotFoundError,
    register_exception_handlers,
)
from .middleware import CorrelationMiddleware

__all__ = [
    "ApiError",
    "AuthenticationError",
    "ClientNotFoundError",
    "LoginError",
    "ParameterError",
    "PermissionDeniedError",
    "StoreUnavailableError",
    "UnknownError",
    "UserExistsError",
    "UserNotFoundError",
    "register_exception_handlers",
    "CorrelationMiddleware",
]
