"""
User Routes.

``/api/user`` for the signed-in user, plus the administrative user
endpoints. Admins manage every field; managers can list users and toggle
``disabled`` and ``roles``.

Author: OAuthKeeper Team
Date: 2026-02-09
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from oauthkeeper.core.config_manager import OAuthKeeperConfig
from oauthkeeper.models import ROLE_ADMIN, NewUser, User, utcnow
from oauthkeeper.oauth.gate import ADMIN, ADMIN_OR_MANAGER
from oauthkeeper.oauth.minting import generate_id
from oauthkeeper.storage.interface import CredentialStore, DuplicateKeyError, UserQuery

from .dependencies import get_config, get_store, require_roles, require_user
from .errors import ParameterError, UserExistsError, UserNotFoundError
from .models import UserAdminUpdate, UserCreate, UserSelfUpdate
from .query import USER_OPTIONAL_FIELDS, parse_paging, parse_user_fields, parse_user_sort


logger = logging.getLogger(__name__)

MANAGER_ONLY_FIELDS = ("validated", "password", "name", "info")


def _user_query(email: Optional[str], contains: Optional[str]) -> UserQuery:
    if email is not None:
        return UserQuery(email=email.lower())
    return UserQuery(contains=contains)


def _list_entry(user: User, fields: set) -> dict:
    entry = user.public()
    for name in USER_OPTIONAL_FIELDS:
        if name not in fields:
            entry.pop(name, None)
    return entry


def create_router() -> APIRouter:
    """Create FastAPI router for user endpoints.

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/api/user", tags=["User"])

    # ========== Signed-in user ==========

    @router.get("")
    async def get_self(user: User = Depends(require_user)) -> dict:
        body = user.public()
        if not body["roles"]:
            del body["roles"]
        return body

    @router.put("")
    async def update_self(
        body: UserSelfUpdate,
        user: User = Depends(require_user),
        store: CredentialStore = Depends(get_store),
    ) -> Response:
        changes = body.changes()
        if not changes:
            raise ParameterError("At least one parameter")
        await store.update_user(user.user_id, changes)
        return Response(status_code=200)

    # ========== Administration ==========

    @router.post("")
    async def create_user(
        body: UserCreate,
        admin: User = Depends(require_roles(ADMIN)),
        store: CredentialStore = Depends(get_store),
        config: OAuthKeeperConfig = Depends(get_config),
    ) -> dict:
        """Create an unvalidated account that expires if never validated."""
        if await store.get_user_by_email(body.email.lower()) is not None:
            raise UserExistsError()

        now = utcnow()
        new_user = NewUser(
            email=body.email,
            password=body.password,
            name=body.name,
            info=body.info,
            expired=now + timedelta(seconds=config.oauth.user_expired_seconds),
        )
        try:
            user = await store.add_user(new_user, generate_id(), now)
        except DuplicateKeyError as e:
            raise UserExistsError() from e

        logger.info(f"User {user.user_id} created by admin={admin.user_id}")
        return {"userId": user.user_id}

    @router.get("/count")
    async def count_users(
        email: Optional[str] = Query(default=None),
        contains: Optional[str] = Query(default=None),
        _: User = Depends(require_roles(ADMIN_OR_MANAGER)),
        store: CredentialStore = Depends(get_store),
    ) -> dict:
        return {"count": await store.count_users(_user_query(email, contains))}

    @router.get("/list")
    async def list_users(
        email: Optional[str] = Query(default=None),
        contains: Optional[str] = Query(default=None),
        num: Optional[str] = Query(default=None),
        p: Optional[str] = Query(default=None),
        fields: Optional[str] = Query(default=None),
        sort: Optional[str] = Query(default=None),
        _: User = Depends(require_roles(ADMIN_OR_MANAGER)),
        store: CredentialStore = Depends(get_store),
    ) -> list:
        """
        List users.

        ``email`` is an exact match and wins over ``contains``. ``fields``
        adds ``expired`` and/or ``disabled`` to each entry; ``sort`` takes
        ``key:asc|desc`` pairs over email, created, validated and name.
        """
        query = _user_query(email, contains)
        query.skip, query.limit = parse_paging(num, p)
        query.sort = parse_user_sort(sort)
        shown = parse_user_fields(fields)

        users = await store.list_users(query)
        return [_list_entry(user, shown) for user in users]

    @router.get("/{user_id}")
    async def get_user(
        user_id: str,
        _: User = Depends(require_roles(ADMIN_OR_MANAGER)),
        store: CredentialStore = Depends(get_store),
    ) -> dict:
        user = await store.get_user(user_id)
        if user is None:
            raise UserNotFoundError()
        return user.public()

    @router.put("/{user_id}")
    async def update_user(
        user_id: str,
        body: UserAdminUpdate,
        actor: User = Depends(require_roles(ADMIN_OR_MANAGER)),
        store: CredentialStore = Depends(get_store),
    ) -> Response:
        changes = body.changes()
        if not actor.has_role(ROLE_ADMIN):
            for name in MANAGER_ONLY_FIELDS:
                changes.pop(name, None)
        if not changes:
            raise ParameterError("At least one parameter")
        if changes.get("validated"):
            changes["expired"] = None

        if not await store.update_user(user_id, changes):
            raise UserNotFoundError()
        logger.info(f"User {user_id} updated by user={actor.user_id}: {sorted(changes)}")
        return Response(status_code=200)

    @router.delete("/{user_id}")
    async def delete_user(
        user_id: str,
        admin: User = Depends(require_roles(ADMIN)),
        store: CredentialStore = Depends(get_store),
    ) -> Response:
        if not await store.remove_user(user_id):
            raise UserNotFoundError()
        logger.info(f"User {user_id} deleted by admin={admin.user_id}")
        return Response(status_code=200)

    return router
