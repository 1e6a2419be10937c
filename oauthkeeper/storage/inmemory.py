"""
In-Memory Storage Backend

Key/value credential store kept in process memory. Access tokens and refresh
tokens are independent records, so revoking a refresh token leaves its
access token untouched. Data is lost on restart.

Author: OAuthKeeper Team
Date: 2026-02-03
"""

import asyncio
from typing import Any, Dict, List, Optional

from oauthkeeper.models import AuthorizationCode, Client, Token, User, utcnow

from .interface import (
    CLIENT_UPDATE_FIELDS,
    ClientQuery,
    CredentialStore,
    DuplicateKeyError,
    UserQuery,
)


def _sort_users(users: List[User], sort) -> List[User]:
    """Stable multi-key sort; None values order first ascending."""
    result = list(users)
    for key, ascending in reversed(sort or [("email", True)]):
        result.sort(
            key=lambda u: (getattr(u, key) is not None, getattr(u, key) or ""),
            reverse=not ascending,
        )
    return result


class InMemoryStorage(CredentialStore):
    """
    In-memory credential store (no persistence).

    **When to Use**:
    - Development and tests
    - Single-process deployments where losing sessions on restart is fine

    **Trade-offs**:
    - Fastest (no I/O)
    - Not shared between worker processes
    - Data lost on restart

    All mutations run under one ``asyncio.Lock`` so a check-then-write is a
    single step from the point of view of other tasks.
    """

    def __init__(self, config, hasher=None):
        super().__init__(config, hasher)
        self._users: Dict[str, User] = {}
        self._emails: Dict[str, str] = {}
        self._clients: Dict[str, Client] = {}
        self._access_tokens: Dict[str, Token] = {}
        self._refresh_tokens: Dict[str, Token] = {}
        self._codes: Dict[str, AuthorizationCode] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # ========== Users ==========

    def _match_users(self, query: Optional[UserQuery]) -> List[User]:
        users = list(self._users.values())
        if query is None:
            return users
        if query.email:
            email = query.email.lower()
            return [u for u in users if u.email == email]
        if query.contains:
            needle = query.contains.lower()
            return [u for u in users if needle in u.email]
        return users

    async def count_users(self, query: Optional[UserQuery] = None) -> int:
        return len(self._match_users(query))

    async def list_users(self, query: Optional[UserQuery] = None) -> List[User]:
        query = query or UserQuery()
        users = _sort_users(self._match_users(query), query.sort)
        page = users[query.skip:query.skip + query.limit]
        return [u.model_copy(deep=True) for u in page]

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        user_id = self._emails.get(email.lower())
        return await self.get_user(user_id) if user_id else None

    async def _insert_user(self, user: User) -> None:
        async with self._lock:
            if user.user_id in self._users or user.email in self._emails:
                raise DuplicateKeyError(f"User already exists: {user.email}")
            self._users[user.user_id] = user.model_copy(deep=True)
            self._emails[user.email] = user.user_id

    async def _update_user_fields(self, user_id: str, changes: Dict[str, Any]) -> bool:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            self._users[user_id] = user.model_copy(update=changes, deep=True)
            return True

    async def remove_user(self, user_id: str) -> bool:
        async with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                return False
            self._emails.pop(user.email, None)
            return True

    # ========== Clients ==========

    def _match_clients(self, query: Optional[ClientQuery]) -> List[Client]:
        clients = sorted(self._clients.values(), key=lambda c: c.created)
        if query is not None and query.user_id is not None:
            clients = [c for c in clients if c.user_id == query.user_id]
        return clients

    async def count_clients(self, query: Optional[ClientQuery] = None) -> int:
        return len(self._match_clients(query))

    async def list_clients(self, query: Optional[ClientQuery] = None) -> List[Client]:
        query = query or ClientQuery()
        page = self._match_clients(query)[query.skip:query.skip + query.limit]
        return [c.model_copy(deep=True) for c in page]

    async def get_client(self, client_id: str) -> Optional[Client]:
        client = self._clients.get(client_id)
        return client.model_copy(deep=True) if client else None

    async def add_client(self, client: Client) -> None:
        async with self._lock:
            if client.id in self._clients:
                raise DuplicateKeyError(f"Client already exists: {client.id}")
            self._clients[client.id] = client.model_copy(deep=True)

    async def update_client(self, client_id: str, changes: Dict[str, Any]) -> bool:
        unknown = set(changes) - set(CLIENT_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update client fields: {', '.join(sorted(unknown))}")
        async with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return False
            self._clients[client_id] = client.model_copy(update=changes, deep=True)
            return True

    async def remove_client(self, client_id: str) -> bool:
        async with self._lock:
            return self._clients.pop(client_id, None) is not None

    async def remove_clients_of_user(self, user_id: str) -> int:
        async with self._lock:
            owned = [cid for cid, c in self._clients.items() if c.user_id == user_id]
            for cid in owned:
                del self._clients[cid]
            return len(owned)

    # ========== Tokens ==========

    async def save_token(self, token: Token) -> None:
        async with self._lock:
            if token.access_token in self._access_tokens:
                raise DuplicateKeyError("Access token already exists")
            if token.refresh_token and token.refresh_token in self._refresh_tokens:
                raise DuplicateKeyError("Refresh token already exists")
            self._access_tokens[token.access_token] = token.model_copy(deep=True)
            if token.refresh_token:
                self._refresh_tokens[token.refresh_token] = token.model_copy(deep=True)

    async def get_access_token(self, access_token: str) -> Optional[Token]:
        token = self._access_tokens.get(access_token)
        return token.model_copy(deep=True) if token else None

    async def get_refresh_token(self, refresh_token: str) -> Optional[Token]:
        token = self._refresh_tokens.get(refresh_token)
        return token.model_copy(deep=True) if token else None

    async def consume_refresh_token(self, refresh_token: str) -> bool:
        async with self._lock:
            return self._refresh_tokens.pop(refresh_token, None) is not None

    # ========== Authorization codes ==========

    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        async with self._lock:
            if code.code in self._codes:
                raise DuplicateKeyError("Authorization code already exists")
            self._codes[code.code] = code.model_copy(deep=True)

    async def get_authorization_code(self, code: str) -> Optional[AuthorizationCode]:
        record = self._codes.get(code)
        return record.model_copy(deep=True) if record else None

    async def consume_authorization_code(self, code: str) -> bool:
        async with self._lock:
            return self._codes.pop(code, None) is not None

    # ========== Maintenance ==========

    async def purge_expired(self) -> Dict[str, int]:
        now = utcnow()
        async with self._lock:
            codes = [k for k, c in self._codes.items() if c.is_expired(now)]
            for k in codes:
                del self._codes[k]

            refresh = [k for k, t in self._refresh_tokens.items() if t.refresh_expired(now)]
            for k in refresh:
                del self._refresh_tokens[k]
            live_refresh = {t.access_token for t in self._refresh_tokens.values()}
            access = [
                k for k, t in self._access_tokens.items()
                if t.access_expired(now) and k not in live_refresh
            ]
            for k in access:
                del self._access_tokens[k]

        return {"codes": len(codes), "tokens": len(access)}

    async def purge(self) -> None:
        async with self._lock:
            self._users.clear()
            self._emails.clear()
            self._clients.clear()
            self._access_tokens.clear()
            self._refresh_tokens.clear()
            self._codes.clear()
