"""
Session Routes.

``/api/session`` issues token pairs for the management API itself, bound to
the empty client ID rather than to a registered OAuth2 client.

Author: OAuthKeeper Team
Date: 2026-02-08
"""

import logging

from fastapi import APIRouter, Depends

from oauthkeeper.models import Token
from oauthkeeper.oauth.exceptions import InvalidGrantError
from oauthkeeper.oauth.grants import OAuthServer

from .dependencies import get_server, get_store, require_token
from .errors import AuthenticationError, LoginError, ParameterError
from .models import SessionLogin, SessionLogout, SessionRefresh


logger = logging.getLogger(__name__)

SESSION_FIELDS_HIDDEN = {"scope", "client_id", "user_id"}


def _session_body(token: Token) -> dict:
    return token.to_json(exclude=SESSION_FIELDS_HIDDEN)


def create_router() -> APIRouter:
    """Create FastAPI router for session endpoints.

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/api/session", tags=["Session"])

    @router.post("/login")
    async def login(body: SessionLogin, server: OAuthServer = Depends(get_server)) -> dict:
        token = await server.open_session(body.email, body.password)
        if token is None:
            raise LoginError()
        return _session_body(token)

    @router.post("/refresh")
    async def refresh(body: SessionRefresh, server: OAuthServer = Depends(get_server)) -> dict:
        """Rotate the session: the old refresh token stops working."""
        if not body.refresh_token or not isinstance(body.refresh_token, str):
            raise ParameterError("`refreshToken` must be a string")
        try:
            token = await server.refresh_session(body.refresh_token)
        except InvalidGrantError as e:
            raise AuthenticationError("Invalid refresh token") from e
        return _session_body(token)

    @router.post("/logout")
    async def logout(
        body: SessionLogout,
        token: Token = Depends(require_token),
        server: OAuthServer = Depends(get_server),
        store=Depends(get_store),
    ) -> dict:
        """Revoke the session refresh token. Tokens of other users are left alone."""
        session = await store.get_refresh_token(body.refresh_token)
        if session is not None and session.user_id == token.user_id:
            await server.close_session(body.refresh_token)
            logger.info(f"Closed session for user={token.user_id}")
        return {}

    return router
