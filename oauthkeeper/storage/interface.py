"""
Credential Store Interface

Defines the abstract repository every credential store backend implements.
It owns users, clients, tokens and authorization codes and carries no
protocol logic beyond the lookups the grant engine relies on.

Author: OAuthKeeper Team
Date: 2026-02-03
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from oauthkeeper.models import (
    GRANT_AUTHORIZATION_CODE,
    AuthorizationCode,
    Client,
    NewClient,
    NewUser,
    Token,
    User,
)
from oauthkeeper.oauth import scope as scopes
from oauthkeeper.oauth.passwords import PasswordHasher


class StorageType(str, Enum):
    """Supported storage backend types."""

    IN_MEMORY = "in-memory"
    SQLITE = "sqlite"


@dataclass
class StorageConfig:
    """
    Configuration for credential store backends.

    Attributes:
        storage_type: Type of storage backend to use
        sqlite_path: Path to SQLite database file
        wal_enabled: Enable SQLite write-ahead logging
    """

    storage_type: StorageType = StorageType.IN_MEMORY
    sqlite_path: str = "./data/oauthkeeper.db"
    wal_enabled: bool = True


USER_SORT_KEYS = ("email", "created", "validated", "name")
USER_UPDATE_FIELDS = ("validated", "expired", "disabled", "roles", "password", "name", "info")
CLIENT_UPDATE_FIELDS = ("redirect_uris", "scopes", "name", "image")


@dataclass
class UserQuery:
    """
    Filter and paging options for user listings.

    ``email`` is an exact, case-insensitive match and takes precedence over
    ``contains``, a case-insensitive substring match. ``sort`` holds
    ``(key, ascending)`` pairs over USER_SORT_KEYS; the default is email
    ascending.
    """

    email: Optional[str] = None
    contains: Optional[str] = None
    skip: int = 0
    limit: int = 100
    sort: List[Tuple[str, bool]] = field(default_factory=list)


@dataclass
class ClientQuery:
    """Filter and paging options for client listings, ordered by creation time."""

    user_id: Optional[str] = None
    skip: int = 0
    limit: int = 100


class CredentialStore(ABC):
    """
    Abstract base class for credential store backends.

    **Design Pattern**: Repository
    - The grant engine and the API routes talk only to this interface
    - Backends (in-memory, SQLite) are selected once at startup through
      ``create_credential_store``

    **Lifecycle**:
    1. __init__(config, hasher) - Bind configuration
    2. initialize() - Create tables, open connections
    3. [Runtime operations]
    4. close() - Release connections

    **Atomicity**:
    Each write touches exactly one record. ``consume_authorization_code`` and
    ``consume_refresh_token`` are the authoritative single-use checks: of any
    number of concurrent callers, exactly one gets ``True``.

    **Error Handling**:
    - Raise StorageError (or a subclass) for backend failures
    - Return None / False for "not found"; never raise for it
    """

    def __init__(self, config: StorageConfig, hasher: Optional[PasswordHasher] = None):
        """
        Initialize credential store with configuration.

        Args:
            config: Storage configuration settings
            hasher: Password hasher used for stored user credentials
        """
        self.config = config
        self.hasher = hasher or PasswordHasher()

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the backend. Must be idempotent.

        Raises:
            StorageInitializationError: If initialization fails
        """

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    # ========== Users ==========

    @abstractmethod
    async def count_users(self, query: Optional[UserQuery] = None) -> int:
        pass

    @abstractmethod
    async def list_users(self, query: Optional[UserQuery] = None) -> List[User]:
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Look up a user by case-folded email, disabled or not."""

    @abstractmethod
    async def _insert_user(self, user: User) -> None:
        """
        Insert a fully built user record.

        Raises:
            DuplicateKeyError: If the user ID or email already exists
        """

    @abstractmethod
    async def _update_user_fields(self, user_id: str, changes: Dict[str, Any]) -> bool:
        """Apply already-normalized field changes. Returns False if absent."""

    @abstractmethod
    async def remove_user(self, user_id: str) -> bool:
        """Delete a user. Returns False if the user did not exist."""

    async def add_user(self, new_user: NewUser, user_id: str, created: datetime) -> User:
        """
        Hash the password and insert a new user.

        Args:
            new_user: Requested user fields
            user_id: Identifier for the new record
            created: Creation time

        Returns:
            The stored user record

        Raises:
            DuplicateKeyError: If the email is already registered
        """
        salt = self.hasher.new_salt()
        user = User(
            user_id=user_id,
            email=new_user.email.lower(),
            created=created,
            validated=new_user.validated,
            expired=new_user.expired,
            disabled=new_user.disabled,
            roles=dict(new_user.roles),
            password=self.hasher.hash(new_user.password, salt),
            salt=salt,
            name=new_user.name,
            info=dict(new_user.info),
        )
        await self._insert_user(user)
        return user

    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> bool:
        """
        Update user fields from USER_UPDATE_FIELDS.

        A ``password`` change is re-hashed under a fresh salt.

        Returns:
            False if the user does not exist
        """
        unknown = set(changes) - set(USER_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")
        changes = dict(changes)
        if "password" in changes:
            salt = self.hasher.new_salt()
            changes["password"] = self.hasher.hash(changes["password"], salt)
            changes["salt"] = salt
        return await self._update_user_fields(user_id, changes)

    async def get_user_by_credentials(self, email: str, password: str) -> Optional[User]:
        """
        Resolve an email/password pair to an active user.

        Unknown email, wrong password and disabled account all return None so
        callers cannot tell them apart.
        """
        user = await self.get_user_by_email(email.strip().lower())
        if user is None or user.disabled:
            self.hasher.reject(password)
            return None
        if not self.hasher.verify(password, user.salt, user.password):
            return None
        return user

    # ========== Clients ==========

    @abstractmethod
    async def count_clients(self, query: Optional[ClientQuery] = None) -> int:
        pass

    @abstractmethod
    async def list_clients(self, query: Optional[ClientQuery] = None) -> List[Client]:
        pass

    @abstractmethod
    async def get_client(self, client_id: str) -> Optional[Client]:
        """Look up a client record as stored."""

    @abstractmethod
    async def add_client(self, client: Client) -> None:
        """
        Insert a client record.

        Raises:
            DuplicateKeyError: If the client ID already exists
        """

    @abstractmethod
    async def update_client(self, client_id: str, changes: Dict[str, Any]) -> bool:
        """Update fields from CLIENT_UPDATE_FIELDS. Returns False if absent."""

    @abstractmethod
    async def remove_client(self, client_id: str) -> bool:
        pass

    @abstractmethod
    async def remove_clients_of_user(self, user_id: str) -> int:
        """Delete every client owned by a user and return how many were removed."""

    async def get_client_for_grant(self, client_id: str, client_secret: Optional[str] = None) -> Optional[Client]:
        """
        Look up a client for a protocol flow.

        The secret, when given, must match exactly. A client whose grants do
        not include ``authorization_code`` comes back with no redirect URIs,
        so nothing can be redirected to on its behalf.
        """
        client = await self.get_client(client_id)
        if client is None:
            return None
        if client_secret is not None and client.client_secret != client_secret:
            return None
        if GRANT_AUTHORIZATION_CODE not in client.grants:
            client = client.model_copy(update={"redirect_uris": []})
        return client

    @staticmethod
    def new_client_record(new_client: NewClient, client_id: str, client_secret: str, created: datetime) -> Client:
        return Client(
            id=client_id,
            created=created,
            client_secret=client_secret,
            redirect_uris=list(new_client.redirect_uris),
            scopes=list(new_client.scopes) if new_client.scopes is not None else None,
            grants=list(new_client.grants),
            user_id=new_client.user_id,
            name=new_client.name,
            image=new_client.image,
        )

    # ========== Tokens ==========

    @abstractmethod
    async def save_token(self, token: Token) -> None:
        """
        Persist a token.

        Raises:
            DuplicateKeyError: If the access or refresh token already exists
        """

    @abstractmethod
    async def get_access_token(self, access_token: str) -> Optional[Token]:
        pass

    @abstractmethod
    async def get_refresh_token(self, refresh_token: str) -> Optional[Token]:
        pass

    @abstractmethod
    async def consume_refresh_token(self, refresh_token: str) -> bool:
        """Atomically revoke a refresh token; True only for the caller that removed it."""

    async def revoke_token(self, refresh_token: str) -> bool:
        """
        Revoke a refresh token. Idempotent: always True.

        The access token issued alongside it stays valid until it expires.
        """
        await self.consume_refresh_token(refresh_token)
        return True

    # ========== Authorization codes ==========

    @abstractmethod
    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        """
        Persist an authorization code.

        Raises:
            DuplicateKeyError: If the code already exists
        """

    @abstractmethod
    async def get_authorization_code(self, code: str) -> Optional[AuthorizationCode]:
        pass

    @abstractmethod
    async def consume_authorization_code(self, code: str) -> bool:
        """Atomically delete a code; True only for the caller that removed it."""

    async def revoke_authorization_code(self, code: str) -> bool:
        """Delete a code. Idempotent: always True."""
        await self.consume_authorization_code(code)
        return True

    # ========== Scope ==========

    async def validate_scope(self, user: Optional[User], client: Client, scope: Optional[str]) -> Optional[str]:
        """Return ``scope`` if the client may request all of it, else None."""
        return scopes.validate_scope(scope, client.scopes)

    async def verify_scope(self, token: Token, scope: Optional[str]) -> bool:
        """True if the token was granted every token of ``scope``."""
        return scopes.verify_scope(token.scope, scope)

    # ========== Maintenance ==========

    @abstractmethod
    async def purge_expired(self) -> Dict[str, int]:
        """
        Delete expired codes and tokens.

        A token row is kept while either of its access or refresh tokens is
        still valid.

        Returns:
            Counts of removed records keyed by "codes" and "tokens"
        """

    @abstractmethod
    async def purge(self) -> None:
        """Delete all data. Used for testing and cleanup. Irreversible."""


class StorageError(Exception):
    """Base exception for storage-related errors."""


class StorageInitializationError(StorageError):
    """Raised when storage initialization fails."""


class StorageIOError(StorageError):
    """Raised when a storage I/O operation fails."""


class DuplicateKeyError(StorageError):
    """Raised when an insert collides with an existing key."""
