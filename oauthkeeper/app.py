"""
OAuthKeeper Application.

Builds the FastAPI application: one credential store, one grant engine and
one authentication gate per process, created here and handed to request
handlers through ``app.state``.

Author: OAuthKeeper Team
Date: 2026-02-10
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from oauthkeeper import __version__
from oauthkeeper.api import client_routes, oauth2_routes, session_routes, user_routes
from oauthkeeper.api.errors import register_exception_handlers
from oauthkeeper.api.middleware import CorrelationMiddleware
from oauthkeeper.core.config_manager import ConfigManager, OAuthKeeperConfig
from oauthkeeper.core.logging_config import configure_logging, get_logger
from oauthkeeper.oauth.gate import AuthGate
from oauthkeeper.oauth.grants import OAuthServer
from oauthkeeper.oauth.passwords import PasswordHasher
from oauthkeeper.oauth.state import StateSigner
from oauthkeeper.storage import (
    CredentialStore,
    StorageConfig,
    StorageError,
    StorageType,
    create_credential_store,
)

logger = get_logger(__name__)


def storage_config(config: OAuthKeeperConfig) -> StorageConfig:
    """Translate the storage settings section into a backend configuration."""
    return StorageConfig(
        storage_type=StorageType(config.storage.type),
        sqlite_path=config.storage.sqlite_path,
        wal_enabled=config.storage.wal_enabled,
    )


def build_store(config: OAuthKeeperConfig) -> CredentialStore:
    """Create (but do not initialize) the configured credential store."""
    hasher = PasswordHasher(iterations=config.oauth.password_iterations)
    return create_credential_store(storage_config(config), hasher=hasher)


def create_app(
    config: Optional[OAuthKeeperConfig] = None,
    store: Optional[CredentialStore] = None,
) -> FastAPI:
    """
    Create the OAuthKeeper FastAPI application.

    Args:
        config: Validated configuration; defaults apply when omitted
        store: Credential store to use instead of the configured backend.
               It is still initialized and closed with the app.

    Returns:
        Configured FastAPI application
    """
    config = config or OAuthKeeperConfig()
    store = store or build_store(config)
    signer = StateSigner(secret=config.oauth.state_secret, max_age=config.oauth.state_lifetime)
    server = OAuthServer(store, config.oauth, signer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.initialize()
        app.state.started_at = time.time()
        logger.info(f"OAuthKeeper v{__version__} ready with {config.storage.type} storage")
        try:
            yield
        finally:
            await store.close()
            logger.info("OAuthKeeper stopped")

    app = FastAPI(
        title="OAuthKeeper",
        description="OAuth2 authorization server",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.oauth_server = server
    app.state.gate = AuthGate(store)
    app.state.started_at = None

    app.add_middleware(CorrelationMiddleware)
    register_exception_handlers(app)

    app.include_router(oauth2_routes.create_router())
    app.include_router(session_routes.create_router())
    app.include_router(user_routes.create_router())
    app.include_router(client_routes.create_router())

    @app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
    async def health_check() -> JSONResponse:
        """Health check: 503 when the credential store does not answer."""
        health: Dict[str, Any] = {
            "status": "healthy",
            "version": __version__,
            "storage": config.storage.type,
            "uptime": int(time.time() - app.state.started_at) if app.state.started_at else 0,
        }
        try:
            await store.count_clients()
        except StorageError as e:
            logger.warning(f"Health check failed: {e}")
            health["status"] = "unhealthy"
            return JSONResponse(content=health, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
        return JSONResponse(content=health)

    logger.debug("FastAPI application created")
    return app


def create_app_from_env() -> FastAPI:
    """
    Application factory for ``uvicorn --factory``.

    Loads configuration from ``OAUTHKEEPER_CONFIG`` (if set) and the
    ``OAUTHKEEPER_*`` environment variables, and configures logging.
    """
    config = ConfigManager().load(config_file=os.environ.get("OAUTHKEEPER_CONFIG"))
    configure_logging(config.logging)
    return create_app(config)
