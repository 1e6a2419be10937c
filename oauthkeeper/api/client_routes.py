"""
Client Routes.

``/api/client`` registers and manages OAuth2 clients. Developers see and
change only the clients they own; a client owned by someone else answers
as not found. Admins see every client, including its owner.

Author: OAuthKeeper Team
Date: 2026-02-09
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from oauthkeeper.models import ROLE_ADMIN, Client, NewClient, User, utcnow
from oauthkeeper.oauth.gate import ADMIN, ADMIN_OR_DEV
from oauthkeeper.oauth.minting import generate_client_secret, generate_id
from oauthkeeper.storage.interface import ClientQuery, CredentialStore

from .dependencies import get_store, require_roles
from .errors import ClientNotFoundError, ParameterError, PermissionDeniedError, UserNotFoundError
from .models import ClientCreate, ClientUpdate
from .query import parse_paging


logger = logging.getLogger(__name__)


def _client_body(client: Client, viewer: User) -> dict:
    if viewer.has_role(ROLE_ADMIN):
        return client.to_json()
    return client.to_json(exclude={"user_id"})


def _owner_filter(viewer: User, user: Optional[str]) -> Optional[str]:
    if not viewer.has_role(ROLE_ADMIN):
        return viewer.user_id
    return user or None


async def _owned_client(store: CredentialStore, client_id: str, viewer: User) -> Client:
    client = await store.get_client(client_id)
    if client is None:
        raise ClientNotFoundError()
    if not viewer.has_role(ROLE_ADMIN) and client.user_id != viewer.user_id:
        raise ClientNotFoundError()
    return client


def create_router() -> APIRouter:
    """Create FastAPI router for client endpoints.

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/api/client", tags=["Client"])

    @router.post("")
    async def create_client(
        body: ClientCreate,
        user: User = Depends(require_roles(ADMIN_OR_DEV)),
        store: CredentialStore = Depends(get_store),
    ) -> dict:
        """
        Register a client. The server generates its ID and secret.

        Only admins may pick the owner or register a client without a scope
        restriction.
        """
        is_admin = user.has_role(ROLE_ADMIN)
        if body.scopes is None and not is_admin:
            raise PermissionDeniedError("Only administrators may register unrestricted clients")

        new_client = NewClient(
            user_id=body.user_id if is_admin and body.user_id else user.user_id,
            redirect_uris=body.redirect_uris,
            scopes=body.scopes,
            grants=body.grants,
            name=body.name,
            image=body.image,
        )
        client = store.new_client_record(new_client, generate_id(), generate_client_secret(), utcnow())
        await store.add_client(client)

        logger.info(f"Client {client.id} registered for user={client.user_id}")
        return {"clientId": client.id}

    @router.get("/count")
    async def count_clients(
        user_filter: Optional[str] = Query(default=None, alias="user"),
        user: User = Depends(require_roles(ADMIN_OR_DEV)),
        store: CredentialStore = Depends(get_store),
    ) -> dict:
        query = ClientQuery(user_id=_owner_filter(user, user_filter))
        return {"count": await store.count_clients(query)}

    @router.get("/list")
    async def list_clients(
        user_filter: Optional[str] = Query(default=None, alias="user"),
        num: Optional[str] = Query(default=None),
        p: Optional[str] = Query(default=None),
        user: User = Depends(require_roles(ADMIN_OR_DEV)),
        store: CredentialStore = Depends(get_store),
    ) -> list:
        skip, limit = parse_paging(num, p)
        query = ClientQuery(user_id=_owner_filter(user, user_filter), skip=skip, limit=limit)
        clients = await store.list_clients(query)
        return [_client_body(client, user) for client in clients]

    @router.delete("/user/{user_id}")
    async def delete_clients_of_user(
        user_id: str,
        admin: User = Depends(require_roles(ADMIN)),
        store: CredentialStore = Depends(get_store),
    ) -> Response:
        if await store.get_user(user_id) is None:
            raise UserNotFoundError()
        removed = await store.remove_clients_of_user(user_id)
        logger.info(f"Removed {removed} clients of user={user_id} by admin={admin.user_id}")
        return Response(status_code=200)

    @router.get("/{client_id}")
    async def get_client(
        client_id: str,
        user: User = Depends(require_roles(ADMIN_OR_DEV)),
        store: CredentialStore = Depends(get_store),
    ) -> dict:
        client = await _owned_client(store, client_id, user)
        return _client_body(client, user)

    @router.put("/{client_id}")
    async def update_client(
        client_id: str,
        body: ClientUpdate,
        user: User = Depends(require_roles(ADMIN_OR_DEV)),
        store: CredentialStore = Depends(get_store),
    ) -> Response:
        changes = body.changes()
        if not changes:
            raise ParameterError("At least one parameter")
        if "scopes" in changes and changes["scopes"] is None and not user.has_role(ROLE_ADMIN):
            raise PermissionDeniedError("Only administrators may remove the scope restriction")

        await _owned_client(store, client_id, user)
        if not await store.update_client(client_id, changes):
            raise ClientNotFoundError()
        return Response(status_code=200)

    @router.delete("/{client_id}")
    async def delete_client(
        client_id: str,
        user: User = Depends(require_roles(ADMIN_OR_DEV)),
        store: CredentialStore = Depends(get_store),
    ) -> Response:
        await _owned_client(store, client_id, user)
        if not await store.remove_client(client_id):
            raise ClientNotFoundError()
        logger.info(f"Client {client_id} deleted by user={user.user_id}")
        return Response(status_code=200)

    return router
