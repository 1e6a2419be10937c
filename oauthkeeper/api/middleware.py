"""
Correlation ID Middleware

Extracts or generates a correlation ID per request, exposes it to the
logging formatter, and logs request start, completion and duration.

Author: OAuthKeeper Team
Date: 2026-02-07
"""

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from oauthkeeper.core.logging_config import (
    clear_correlation_id,
    log_with_context,
    set_correlation_id,
)


logger = logging.getLogger(__name__)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to handle correlation ID extraction and propagation."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        """Process request and inject correlation ID."""
        correlation_id = request.headers.get('x-correlation-id') or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        start_time = time.time()
        log_with_context(
            logger, logging.INFO,
            f"Request started: {request.method} {request.url.path}",
            operation="request_started",
            method=request.method,
            path=request.url.path,
        )

        try:
            response: Response = await call_next(request)
            response.headers['x-correlation-id'] = correlation_id

            duration_ms = (time.time() - start_time) * 1000
            log_with_context(
                logger, logging.INFO,
                f"Request completed: {request.method} {request.url.path} - {response.status_code}",
                operation="request_completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={"context": {
                    "operation": "request_failed",
                    "error_type": type(e).__name__,
                    "duration_ms": round(duration_ms, 2),
                }},
            )
            raise
        finally:
            clear_correlation_id()
