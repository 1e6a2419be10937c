"""
API Errors and Exception Handlers

Error taxonomy for the ``/api`` routes and the FastAPI handlers that map
both it and the OAuth protocol errors to HTTP responses:

- ``/api/*`` errors render as ``{"code": ..., "message": ...}``
- ``/oauth2/*`` errors render as ``{"error": ..., "error_description": ...}``

Stack traces are logged, never returned.

Author: OAuthKeeper Team
Date: 2026-02-07
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from oauthkeeper.core.logging_config import get_correlation_id
from oauthkeeper.oauth.exceptions import InvalidClientError, OAuthError
from oauthkeeper.storage.interface import StorageError


logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base exception for API errors."""

    code = "EUNKNOWN"
    default_message = "Unknown error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class UnknownError(ApiError):
    pass


class StoreUnavailableError(ApiError):
    code = "EDB"
    default_message = "Database error"


class ParameterError(ApiError):
    code = "EPARAM"
    default_message = "Parameter error"
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(ApiError):
    code = "EAUTH"
    default_message = "Authentication error"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(ApiError):
    code = "EPERM"
    default_message = "Access denied"
    status_code = status.HTTP_403_FORBIDDEN


class LoginError(ApiError):
    code = "ESESSION_LOGIN"
    default_message = "Invalid account or password"
    status_code = status.HTTP_400_BAD_REQUEST


class UserExistsError(ApiError):
    code = "EUSER_EXISTS"
    default_message = "The account has been registered"
    status_code = status.HTTP_400_BAD_REQUEST


class UserNotFoundError(ApiError):
    code = "EUSER_NOT_FOUND"
    default_message = "The specified user is not found"
    status_code = status.HTTP_404_NOT_FOUND


class ClientNotFoundError(ApiError):
    code = "ECLIENT_NOT_FOUND"
    default_message = "The specified client is not found"
    status_code = status.HTTP_404_NOT_FOUND


def _is_oauth_path(request: Request) -> bool:
    return request.url.path.startswith("/oauth2")


def _oauth_response(exc: OAuthError) -> JSONResponse:
    headers = None
    if isinstance(exc, InvalidClientError) and exc.basic_auth:
        headers = {"WWW-Authenticate": 'Basic realm="Service"'}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _api_response(exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def oauth_exception_handler(request: Request, exc: OAuthError) -> JSONResponse:
    """Handle OAuth protocol errors."""
    logger.info(
        f"OAuth error on {request.method} {request.url.path}: {exc.error}",
        extra={"context": {"correlation_id": get_correlation_id(), "error": exc.error}},
    )
    return _oauth_response(exc)


async def api_exception_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle API errors."""
    logger.info(
        f"API error on {request.method} {request.url.path}: {exc.code}",
        extra={"context": {"correlation_id": get_correlation_id(), "code": exc.code}},
    )
    return _api_response(exc)


async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Store failures surface as 503 without details."""
    logger.error(
        f"Storage error on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    if _is_oauth_path(request):
        return _oauth_response(OAuthError("server_error", "Server error", status_code=503))
    return _api_response(StoreUnavailableError())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a parameter error."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    if _is_oauth_path(request):
        return _oauth_response(OAuthError("invalid_request", details or "Invalid request"))
    return _api_response(ParameterError(details or None))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything uncaught: log with traceback, answer with an opaque 503."""
    logger.error(
        f"Unexpected error on {request.method} {request.url.path}: {type(exc).__name__}",
        exc_info=exc,
    )
    if _is_oauth_path(request):
        return _oauth_response(OAuthError("server_error", "Server error", status_code=503))
    return _api_response(UnknownError())


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(OAuthError, oauth_exception_handler)
    app.add_exception_handler(ApiError, api_exception_handler)
    app.add_exception_handler(StorageError, storage_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
