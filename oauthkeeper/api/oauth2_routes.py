"""
OAuth2 Routes.

Protocol endpoints under ``/oauth2``: the authorization code flow pages
(auth, login, grant), the token endpoint, and the default redirect target
for installed applications.

Author: OAuthKeeper Team
Date: 2026-02-08
"""

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import unquote_plus

from fastapi import APIRouter, Depends, Form, Header, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from oauthkeeper.oauth.exceptions import InvalidClientError, LoginFailed
from oauthkeeper.oauth.grants import OAuthServer, TokenRequest

from .dependencies import get_server


logger = logging.getLogger(__name__)

template_dir = Path(__file__).parent / "templates"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html"]),
)


def render_template(template_name: str, context: dict) -> HTMLResponse:
    """Render a page from the templates directory."""
    template = jinja_env.get_template(template_name)
    return HTMLResponse(content=template.render(**context))


def parse_basic_auth(authorization: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Decode ``Authorization: Basic`` client credentials.

    Returns:
        ``(client_id, client_secret)``, or None when the header is absent or
        uses another scheme

    Raises:
        InvalidClientError: Basic scheme with an undecodable value
    """
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidClientError("Invalid client: cannot retrieve client credentials", basic_auth=True) from e
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Invalid client: cannot retrieve client credentials", basic_auth=True)
    # RFC 6749 section 2.3.1: both parts are form-urlencoded before encoding
    return unquote_plus(client_id), unquote_plus(client_secret)


def create_router() -> APIRouter:
    """Create FastAPI router for the OAuth2 endpoints.

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/oauth2", tags=["OAuth2"])

    @router.get("/auth")
    async def authorize(
        client_id: Optional[str] = Query(default=None),
        response_type: Optional[str] = Query(default=None),
        redirect_uri: Optional[str] = Query(default=None),
        scope: Optional[str] = Query(default=None),
        state: Optional[str] = Query(default=None),
        server: OAuthServer = Depends(get_server),
    ) -> RedirectResponse:
        """Validate the authorization request and hand off to the login page."""
        carrier = await server.authorize_request(client_id, response_type, redirect_uri, scope, state)
        return RedirectResponse(f"/oauth2/login?state={carrier}", status_code=status.HTTP_302_FOUND)

    @router.get("/login")
    async def login_page(
        state: Optional[str] = Query(default=None),
        server: OAuthServer = Depends(get_server),
    ) -> HTMLResponse:
        request = server.load_request(state)
        return render_template("login.html", {"state": state, "client_id": request.client_id, "error": None})

    @router.post("/login")
    async def login(
        state: Optional[str] = Form(default=None),
        account: Optional[str] = Form(default=None),
        password: Optional[str] = Form(default=None),
        server: OAuthServer = Depends(get_server),
    ):
        """Authenticate the resource owner; failures show the page again."""
        try:
            carrier = await server.login(state, account, password)
        except LoginFailed as e:
            request = server.load_request(state)
            return render_template(
                "login.html",
                {"state": state, "client_id": request.client_id, "error": e.message},
            )
        return RedirectResponse(f"/oauth2/grant?state={carrier}", status_code=status.HTTP_302_FOUND)

    @router.get("/grant")
    async def grant_page(
        state: Optional[str] = Query(default=None),
        server: OAuthServer = Depends(get_server),
    ) -> HTMLResponse:
        request, client = await server.consent_context(state)
        return render_template("grant.html", {
            "state": state,
            "client_name": client.name or client.id,
            "scope": request.scope,
        })

    @router.post("/grant")
    async def grant(
        state: Optional[str] = Form(default=None),
        allow: Optional[str] = Form(default=None),
        server: OAuthServer = Depends(get_server),
    ) -> RedirectResponse:
        location = await server.grant(state, allow == "yes")
        return RedirectResponse(location, status_code=status.HTTP_302_FOUND)

    @router.post("/token")
    async def token(
        grant_type: Optional[str] = Form(default=None),
        client_id: Optional[str] = Form(default=None),
        client_secret: Optional[str] = Form(default=None),
        code: Optional[str] = Form(default=None),
        redirect_uri: Optional[str] = Form(default=None),
        username: Optional[str] = Form(default=None),
        password: Optional[str] = Form(default=None),
        refresh_token: Optional[str] = Form(default=None),
        scope: Optional[str] = Form(default=None),
        authorization: Optional[str] = Header(default=None),
        server: OAuthServer = Depends(get_server),
    ) -> JSONResponse:
        """Token endpoint for all four grant types.

        Client credentials come from HTTP Basic when present, otherwise from
        the form body.
        """
        basic = parse_basic_auth(authorization)
        if basic is not None:
            client_id, client_secret = basic

        response = await server.token(TokenRequest(
            grant_type=grant_type,
            client_id=client_id,
            client_secret=client_secret,
            basic_auth=basic is not None,
            code=code,
            redirect_uri=redirect_uri,
            username=username,
            password=password,
            refresh_token=refresh_token,
            scope=scope,
        ))
        return JSONResponse(
            content=response.to_dict(),
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
        )

    @router.get("/redirect")
    async def redirect_target(request: Request) -> JSONResponse:
        """Default redirect URI for installed applications: echo the result."""
        return JSONResponse(content=dict(request.query_params))

    return router
