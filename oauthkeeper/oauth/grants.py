"""
OAuth2 Grant Engine.

Implements the authorization code flow (authorize, login, consent, code
exchange) and the password, client credentials and refresh token grants on
top of a credential store. The engine keeps no state between calls: every
method is a function of its arguments and the store contents, and the only
state shared between the login and consent hops is the signed carrier.

Author: OAuthKeeper Team
Date: 2026-02-06
"""

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauthkeeper.core.config_manager import OAuthConfig
from oauthkeeper.models import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_PASSWORD,
    GRANT_REFRESH_TOKEN,
    GRANT_TYPES,
    AuthorizationCode,
    Client,
    Token,
    User,
    utcnow,
)
from oauthkeeper.storage.interface import CredentialStore

from .exceptions import (
    AccessDeniedError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    LoginFailed,
    OAuthError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .minting import generate_token
from .scope import is_subset
from .state import StateSigner

logger = logging.getLogger(__name__)

# Session tokens from /api/session are bound to this client ID
SESSION_CLIENT_ID = ""


@dataclass
class AuthorizationRequest:
    """Parameters carried from ``/oauth2/auth`` through login and consent."""

    client_id: str
    redirect_uri: str
    response_type: str = "code"
    scope: Optional[str] = None
    state: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationRequest":
        try:
            return cls(**data)
        except TypeError as e:
            raise InvalidRequestError("Invalid state") from e


@dataclass
class TokenRequest:
    """OAuth 2.0 token request (``POST /oauth2/token``)."""

    grant_type: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    basic_auth: bool = False
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


@dataclass
class TokenResponse:
    """OAuth 2.0 token response."""

    access_token: str
    expires_in: int
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_token(cls, token: Token, now: Optional[datetime] = None) -> "TokenResponse":
        remaining = (token.access_token_expires_at - (now or utcnow())).total_seconds()
        return cls(
            access_token=token.access_token,
            expires_in=max(0, math.ceil(remaining)),
            refresh_token=token.refresh_token,
            scope=token.scope,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def append_query(uri: str, params: Dict[str, Optional[str]]) -> str:
    """Add query parameters to a URI, keeping any it already has."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


class OAuthServer:
    """
    Grant engine.

    Built once at startup with the store, the state signer and the OAuth
    settings, then shared by every request handler.
    """

    def __init__(self, store: CredentialStore, settings: OAuthConfig, signer: StateSigner):
        self.store = store
        self.settings = settings
        self.signer = signer

    # ========== Authorization code flow ==========

    async def authorize_request(
        self,
        client_id: Optional[str],
        response_type: Optional[str],
        redirect_uri: Optional[str],
        scope: Optional[str] = None,
        state: Optional[str] = None,
    ) -> str:
        """
        Validate ``GET /oauth2/auth`` and open a state carrier for login.

        Returns:
            Signed carrier holding the authorization request

        Raises:
            InvalidRequestError: Missing parameter or unregistered redirect URI
            UnsupportedResponseTypeError: ``response_type`` is not ``code``
            InvalidClientError: Unknown client
            UnauthorizedClientError: Client may not use the code flow
            InvalidScopeError: Requested scope is not allowed for the client
        """
        for name, value in (("client_id", client_id), ("response_type", response_type),
                            ("redirect_uri", redirect_uri)):
            if not value:
                raise InvalidRequestError(f"Missing parameter: `{name}`")
        if response_type != "code":
            raise UnsupportedResponseTypeError("`response_type` must be code")

        client = await self._client_for_code_flow(client_id, redirect_uri)
        if scope and await self.store.validate_scope(None, client, scope) is None:
            raise InvalidScopeError("Invalid scope: Requested scope is invalid")

        request = AuthorizationRequest(
            client_id=client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            scope=scope or None,
            state=state or None,
        )
        return self.signer.dumps(asdict(request))

    async def _client_for_code_flow(self, client_id: str, redirect_uri: str) -> Client:
        client = await self.store.get_client_for_grant(client_id)
        if client is None:
            raise InvalidClientError("Invalid client: client is invalid")
        if not client.allows_grant(GRANT_AUTHORIZATION_CODE):
            raise UnauthorizedClientError()
        if redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("Invalid request: `redirect_uri` is not registered for the client")
        return client

    def load_request(self, carrier: Optional[str]) -> AuthorizationRequest:
        """Verify a carrier and decode the authorization request in it."""
        return AuthorizationRequest.from_dict(self.signer.loads(carrier))

    async def login(self, carrier: Optional[str], account: Optional[str], password: Optional[str]) -> str:
        """
        Authenticate the resource owner on the login page.

        Returns:
            A new carrier with the user's ID attached

        Raises:
            InvalidRequestError: Carrier is missing, tampered with or stale
            LoginFailed: Missing fields or bad credentials; the page is shown again
        """
        request = self.load_request(carrier)
        if not account or not password:
            raise LoginFailed("Login failed")
        user = await self.store.get_user_by_credentials(account, password)
        if user is None:
            logger.info(f"Login rejected for client={request.client_id}")
            raise LoginFailed("Invalid account or password")
        request.user_id = user.user_id
        return self.signer.dumps(asdict(request))

    async def consent_context(self, carrier: Optional[str]) -> Tuple[AuthorizationRequest, Client]:
        """Resolve the carrier and client shown on the consent page."""
        request = self.load_request(carrier)
        if not request.user_id:
            raise InvalidRequestError("Invalid state: not logged in")
        client = await self._client_for_code_flow(request.client_id, request.redirect_uri)
        return request, client

    async def grant(self, carrier: Optional[str], allow: bool) -> str:
        """
        Handle the consent decision.

        Returns:
            The URL to redirect the user agent to: the client's redirect URI
            with either ``code`` or ``error``, plus ``state`` when one was sent

        Raises:
            InvalidRequestError / InvalidClientError: Nothing safe to redirect to
        """
        request, client = await self.consent_context(carrier)

        try:
            if not allow:
                raise AccessDeniedError("Access denied: user denied access to application")
            user = await self.store.get_user(request.user_id)
            if user is None or user.disabled:
                raise AccessDeniedError("Access denied: user is invalid")
            code = await self._issue_code(request, client, user)
        except OAuthError as e:
            logger.info(f"Authorization failed for client={client.id}: {e.error}")
            return append_query(request.redirect_uri, {
                "error": e.error,
                "error_description": e.error_description,
                "state": request.state,
            })

        logger.info(f"Issued authorization code for client={client.id}")
        return append_query(request.redirect_uri, {"code": code.code, "state": request.state})

    async def _issue_code(self, request: AuthorizationRequest, client: Client, user: User) -> AuthorizationCode:
        scope = None
        if request.scope:
            scope = await self.store.validate_scope(user, client, request.scope)
            if scope is None:
                raise InvalidScopeError("Invalid scope: Requested scope is invalid")
        code = AuthorizationCode(
            code=generate_token(),
            expires_at=utcnow() + timedelta(seconds=self.settings.authorization_code_lifetime),
            redirect_uri=request.redirect_uri,
            scope=scope,
            client_id=client.id,
            user_id=user.user_id,
        )
        await self.store.save_authorization_code(code)
        return code

    # ========== Token endpoint ==========

    async def token(self, request: TokenRequest) -> TokenResponse:
        """
        Handle ``POST /oauth2/token``.

        Raises:
            OAuthError: One of the RFC 6749 section 5.2 errors
        """
        if not request.grant_type:
            raise InvalidRequestError("Missing parameter: `grant_type`")
        if request.grant_type not in GRANT_TYPES:
            raise UnsupportedGrantTypeError("Unsupported grant type: `grant_type` is invalid")

        client = await self._authenticate_client(request)
        if not client.allows_grant(request.grant_type):
            raise UnauthorizedClientError("Unauthorized client: `grant_type` is invalid")

        handlers = {
            GRANT_AUTHORIZATION_CODE: self._authorization_code_grant,
            GRANT_PASSWORD: self._password_grant,
            GRANT_CLIENT_CREDENTIALS: self._client_credentials_grant,
            GRANT_REFRESH_TOKEN: self._refresh_token_grant,
        }
        token = await handlers[request.grant_type](request, client)
        logger.info(f"Issued token via {request.grant_type} for client={client.id}")
        return TokenResponse.from_token(token)

    async def _authenticate_client(self, request: TokenRequest) -> Client:
        if not request.client_id or not request.client_secret:
            raise InvalidClientError(
                "Invalid client: cannot retrieve client credentials",
                basic_auth=request.basic_auth,
            )
        client = await self.store.get_client_for_grant(request.client_id, request.client_secret)
        if client is None:
            raise InvalidClientError("Invalid client: client is invalid", basic_auth=request.basic_auth)
        return client

    async def _authorization_code_grant(self, request: TokenRequest, client: Client) -> Token:
        if not request.code:
            raise InvalidRequestError("Missing parameter: `code`")

        code = await self.store.get_authorization_code(request.code)
        if code is None or code.client_id != client.id:
            raise InvalidGrantError("Invalid grant: authorization code is invalid")
        if code.is_expired():
            raise InvalidGrantError("Invalid grant: authorization code has expired")
        if request.redirect_uri != code.redirect_uri:
            raise InvalidGrantError("Invalid grant: `redirect_uri` is invalid")
        await self._active_user(code.user_id)

        # Whoever deletes the code wins; concurrent redemptions fail here
        if not await self.store.consume_authorization_code(code.code):
            raise InvalidGrantError("Invalid grant: authorization code is invalid")

        return await self._issue_token(client.id, code.user_id, code.scope, with_refresh=True)

    async def _password_grant(self, request: TokenRequest, client: Client) -> Token:
        if not request.username:
            raise InvalidRequestError("Missing parameter: `username`")
        if not request.password:
            raise InvalidRequestError("Missing parameter: `password`")

        user = await self.store.get_user_by_credentials(request.username, request.password)
        if user is None:
            raise InvalidGrantError("Invalid grant: user credentials are invalid")

        scope = await self._requested_scope(user, client, request.scope)
        return await self._issue_token(client.id, user.user_id, scope, with_refresh=True)

    async def _client_credentials_grant(self, request: TokenRequest, client: Client) -> Token:
        scope = await self._requested_scope(None, client, request.scope)
        return await self._issue_token(client.id, None, scope, with_refresh=False)

    async def _refresh_token_grant(self, request: TokenRequest, client: Client) -> Token:
        if not request.refresh_token:
            raise InvalidRequestError("Missing parameter: `refresh_token`")
        return await self._rotate(request.refresh_token, client.id, request.scope)

    async def _requested_scope(self, user: Optional[User], client: Client, scope: Optional[str]) -> Optional[str]:
        if not scope:
            return None
        validated = await self.store.validate_scope(user, client, scope)
        if validated is None:
            raise InvalidScopeError("Invalid scope: Requested scope is invalid")
        return validated

    async def _active_user(self, user_id: Optional[str]) -> Optional[User]:
        if user_id is None:
            return None
        user = await self.store.get_user(user_id)
        if user is None or user.disabled:
            raise InvalidGrantError("Invalid grant: user is invalid")
        return user

    async def _rotate(self, refresh_token: str, client_id: str, scope: Optional[str]) -> Token:
        """Exchange a refresh token for a new pair, revoking the old refresh token."""
        old = await self.store.get_refresh_token(refresh_token)
        if old is None or old.client_id != client_id:
            raise InvalidGrantError("Invalid grant: refresh token is invalid")
        if old.refresh_expired():
            raise InvalidGrantError("Invalid grant: refresh token has expired")
        await self._active_user(old.user_id)

        if scope and not is_subset(scope, old.scope):
            raise InvalidScopeError("Invalid scope: Unable to add extra scopes")

        if not await self.store.consume_refresh_token(refresh_token):
            raise InvalidGrantError("Invalid grant: refresh token is invalid")

        return await self._issue_token(client_id, old.user_id, scope or old.scope, with_refresh=True)

    async def _issue_token(
        self,
        client_id: str,
        user_id: Optional[str],
        scope: Optional[str],
        with_refresh: bool,
    ) -> Token:
        now = utcnow()
        token = Token(
            access_token=generate_token(),
            access_token_expires_at=now + timedelta(seconds=self.settings.access_token_lifetime),
            scope=scope,
            client_id=client_id,
            user_id=user_id,
        )
        if with_refresh:
            token.refresh_token = generate_token()
            token.refresh_token_expires_at = now + timedelta(seconds=self.settings.refresh_token_lifetime)
        await self.store.save_token(token)
        return token

    # ========== Sessions (/api/session) ==========

    async def open_session(self, email: str, password: str) -> Optional[Token]:
        """Issue a session token pair for the API, or None for bad credentials."""
        user = await self.store.get_user_by_credentials(email, password)
        if user is None:
            return None
        logger.info(f"Opened session for user={user.user_id}")
        return await self._issue_token(SESSION_CLIENT_ID, user.user_id, None, with_refresh=True)

    async def refresh_session(self, refresh_token: str) -> Token:
        """
        Rotate a session refresh token.

        Raises:
            InvalidGrantError: Unknown, expired or already used refresh token
        """
        return await self._rotate(refresh_token, SESSION_CLIENT_ID, None)

    async def close_session(self, refresh_token: str) -> None:
        await self.store.revoke_token(refresh_token)
