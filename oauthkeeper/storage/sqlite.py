"""
SQLite Storage Backend

Persistent credential store on SQLite (aiosqlite) with WAL mode. Tokens are
relational: one row pairs an access token with its refresh token. Revoking
the refresh token clears the refresh columns and leaves the access token
usable until it expires.

Author: OAuthKeeper Team
Date: 2026-02-05
"""

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from oauthkeeper.models import AuthorizationCode, Client, Token, User, utcnow

from .interface import (
    CLIENT_UPDATE_FIELDS,
    USER_SORT_KEYS,
    ClientQuery,
    CredentialStore,
    DuplicateKeyError,
    StorageError,
    StorageInitializationError,
    StorageIOError,
    UserQuery,
)


SCHEMA_VERSION = 1

_USER_COLUMNS = "user_id, email, created, validated, expired, disabled, roles, password, salt, name, info"
_CLIENT_COLUMNS = "id, created, client_secret, redirect_uris, scopes, grants, user_id, name, image"
_TOKEN_COLUMNS = (
    "access_token, access_token_expires_at, refresh_token, refresh_token_expires_at, "
    "scope, client_id, user_id"
)
_CODE_COLUMNS = "code, expires_at, redirect_uri, scope, client_id, user_id"

# Columns holding JSON documents
_JSON_COLUMNS = {"roles", "info", "redirect_uris", "scopes", "grants"}
# Columns holding epoch milliseconds
_TIME_COLUMNS = {"validated", "expired", "created"}


def _to_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _from_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteStorage(CredentialStore):
    """
    SQLite-based persistent credential store.

    **Features**:
    - WAL mode, so readers never block on the writer
    - UNIQUE constraints back the duplicate-key contract
    - Single-use redemption through ``DELETE``/``UPDATE`` plus ``rowcount``

    **Schema**:
    - `users`, `clients`: one row per record, JSON columns for maps and lists
    - `tokens`: access token primary key, nullable unique refresh token
    - `authorization_codes`: one row per code
    - `schema_version`: tracks schema version for migrations

    **When to Use**:
    - Deployments that must survive restarts
    - Several uvicorn workers sharing one database file
    """

    def __init__(self, config, hasher=None):
        super().__init__(config, hasher)
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Open the database and create the schema if needed."""
        if self._initialized:
            return

        try:
            db_path = Path(self.config.sqlite_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)

            self._db = await aiosqlite.connect(
                self.config.sqlite_path,
                timeout=30.0,
                isolation_level=None  # Autocommit mode for WAL
            )
            self._db.row_factory = aiosqlite.Row

            if self.config.wal_enabled:
                await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")

            await self._create_schema()
            await self._check_schema_version()

            self._initialized = True

        except Exception as e:
            raise StorageInitializationError(
                f"Failed to initialize SQLite storage: {e}"
            ) from e

    async def _create_schema(self) -> None:
        """Create database schema if it doesn't exist."""
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                created INTEGER NOT NULL,
                validated INTEGER,
                expired INTEGER,
                disabled INTEGER NOT NULL DEFAULT 0,
                roles TEXT NOT NULL DEFAULT '{}',
                password TEXT NOT NULL,
                salt TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                info TEXT NOT NULL DEFAULT '{}'
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                created INTEGER NOT NULL,
                client_secret TEXT NOT NULL,
                redirect_uris TEXT NOT NULL DEFAULT '[]',
                scopes TEXT,
                grants TEXT NOT NULL DEFAULT '[]',
                user_id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                image TEXT NOT NULL DEFAULT ''
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_clients_user ON clients(user_id)"
        )

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS tokens (
                access_token TEXT PRIMARY KEY,
                access_token_expires_at INTEGER NOT NULL,
                refresh_token TEXT UNIQUE,
                refresh_token_expires_at INTEGER,
                scope TEXT,
                client_id TEXT NOT NULL,
                user_id TEXT
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS authorization_codes (
                code TEXT PRIMARY KEY,
                expires_at INTEGER NOT NULL,
                redirect_uri TEXT NOT NULL,
                scope TEXT,
                client_id TEXT NOT NULL,
                user_id TEXT NOT NULL
            )
        """)

    async def _check_schema_version(self) -> None:
        """Record the schema version on first run."""
        cursor = await self._db.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,)
            )

    async def close(self) -> None:
        """Close SQLite database connection."""
        if self._db:
            await self._db.close()
            self._db = None
        self._initialized = False

    # ========== Helpers ==========

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageIOError("SQLite storage is not initialized")
        return self._db

    async def _fetchone(self, sql: str, params=()) -> Optional[aiosqlite.Row]:
        try:
            cursor = await self._conn().execute(sql, params)
            return await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageIOError(f"Query failed: {e}") from e

    async def _fetchall(self, sql: str, params=()) -> List[aiosqlite.Row]:
        try:
            cursor = await self._conn().execute(sql, params)
            return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise StorageIOError(f"Query failed: {e}") from e

    async def _write(self, sql: str, params=()) -> int:
        """Run one write statement and return the affected row count."""
        try:
            async with self._write_lock:
                db = self._conn()
                cursor = await db.execute(sql, params)
                await db.commit()
                return cursor.rowcount
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageIOError(f"Write failed: {e}") from e

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            user_id=row["user_id"],
            email=row["email"],
            created=_from_ms(row["created"]),
            validated=_from_ms(row["validated"]),
            expired=_from_ms(row["expired"]),
            disabled=bool(row["disabled"]),
            roles=json.loads(row["roles"]),
            password=row["password"],
            salt=row["salt"],
            name=row["name"],
            info=json.loads(row["info"]),
        )

    @staticmethod
    def _row_to_client(row) -> Client:
        scopes = row["scopes"]
        return Client(
            id=row["id"],
            created=_from_ms(row["created"]),
            client_secret=row["client_secret"],
            redirect_uris=json.loads(row["redirect_uris"]),
            scopes=json.loads(scopes) if scopes is not None else None,
            grants=json.loads(row["grants"]),
            user_id=row["user_id"],
            name=row["name"],
            image=row["image"],
        )

    @staticmethod
    def _row_to_token(row) -> Token:
        return Token(
            access_token=row["access_token"],
            access_token_expires_at=_from_ms(row["access_token_expires_at"]),
            refresh_token=row["refresh_token"],
            refresh_token_expires_at=_from_ms(row["refresh_token_expires_at"]),
            scope=row["scope"],
            client_id=row["client_id"],
            user_id=row["user_id"],
        )

    @staticmethod
    def _column_value(column: str, value: Any) -> Any:
        if column in _JSON_COLUMNS:
            return json.dumps(value) if value is not None else None
        if column in _TIME_COLUMNS:
            return _to_ms(value)
        if column == "disabled":
            return int(bool(value))
        return value

    async def _update_columns(self, table: str, key_column: str, key: str, changes: Dict[str, Any]) -> bool:
        if not changes:
            row = await self._fetchone(f"SELECT 1 FROM {table} WHERE {key_column} = ?", (key,))
            return row is not None
        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = [self._column_value(column, value) for column, value in changes.items()]
        params.append(key)
        count = await self._write(
            f"UPDATE {table} SET {assignments} WHERE {key_column} = ?", params
        )
        return count > 0

    # ========== Users ==========

    @staticmethod
    def _user_where(query: Optional[UserQuery]):
        if query is None:
            return "", []
        if query.email:
            return "WHERE email = ?", [query.email.lower()]
        if query.contains:
            return "WHERE email LIKE ? ESCAPE '\\'", [f"%{_escape_like(query.contains.lower())}%"]
        return "", []

    async def count_users(self, query: Optional[UserQuery] = None) -> int:
        where, params = self._user_where(query)
        row = await self._fetchone(f"SELECT COUNT(*) AS n FROM users {where}", params)
        return row["n"]

    async def list_users(self, query: Optional[UserQuery] = None) -> List[User]:
        query = query or UserQuery()
        where, params = self._user_where(query)
        order = []
        for key, ascending in query.sort or [("email", True)]:
            if key not in USER_SORT_KEYS:
                raise ValueError(f"Invalid sort key: {key}")
            order.append(f"{key} {'ASC' if ascending else 'DESC'}")
        params += [query.limit, query.skip]
        rows = await self._fetchall(
            f"SELECT {_USER_COLUMNS} FROM users {where} "
            f"ORDER BY {', '.join(order)} LIMIT ? OFFSET ?",
            params,
        )
        return [self._row_to_user(row) for row in rows]

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._fetchone(f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        row = await self._fetchone(f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", (email.lower(),))
        return self._row_to_user(row) if row else None

    async def _insert_user(self, user: User) -> None:
        await self._write(
            f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                user.user_id,
                user.email,
                _to_ms(user.created),
                _to_ms(user.validated),
                _to_ms(user.expired),
                int(user.disabled),
                json.dumps(user.roles),
                user.password,
                user.salt,
                user.name,
                json.dumps(user.info),
            ),
        )

    async def _update_user_fields(self, user_id: str, changes: Dict[str, Any]) -> bool:
        return await self._update_columns("users", "user_id", user_id, changes)

    async def remove_user(self, user_id: str) -> bool:
        return await self._write("DELETE FROM users WHERE user_id = ?", (user_id,)) > 0

    # ========== Clients ==========

    @staticmethod
    def _client_where(query: Optional[ClientQuery]):
        if query is not None and query.user_id is not None:
            return "WHERE user_id = ?", [query.user_id]
        return "", []

    async def count_clients(self, query: Optional[ClientQuery] = None) -> int:
        where, params = self._client_where(query)
        row = await self._fetchone(f"SELECT COUNT(*) AS n FROM clients {where}", params)
        return row["n"]

    async def list_clients(self, query: Optional[ClientQuery] = None) -> List[Client]:
        query = query or ClientQuery()
        where, params = self._client_where(query)
        params += [query.limit, query.skip]
        rows = await self._fetchall(
            f"SELECT {_CLIENT_COLUMNS} FROM clients {where} "
            "ORDER BY created ASC, id ASC LIMIT ? OFFSET ?",
            params,
        )
        return [self._row_to_client(row) for row in rows]

    async def get_client(self, client_id: str) -> Optional[Client]:
        row = await self._fetchone(f"SELECT {_CLIENT_COLUMNS} FROM clients WHERE id = ?", (client_id,))
        return self._row_to_client(row) if row else None

    async def add_client(self, client: Client) -> None:
        await self._write(
            f"INSERT INTO clients ({_CLIENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                client.id,
                _to_ms(client.created),
                client.client_secret,
                json.dumps(client.redirect_uris),
                json.dumps(client.scopes) if client.scopes is not None else None,
                json.dumps(client.grants),
                client.user_id,
                client.name,
                client.image,
            ),
        )

    async def update_client(self, client_id: str, changes: Dict[str, Any]) -> bool:
        unknown = set(changes) - set(CLIENT_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update client fields: {', '.join(sorted(unknown))}")
        return await self._update_columns("clients", "id", client_id, changes)

    async def remove_client(self, client_id: str) -> bool:
        return await self._write("DELETE FROM clients WHERE id = ?", (client_id,)) > 0

    async def remove_clients_of_user(self, user_id: str) -> int:
        return await self._write("DELETE FROM clients WHERE user_id = ?", (user_id,))

    # ========== Tokens ==========

    async def save_token(self, token: Token) -> None:
        await self._write(
            f"INSERT INTO tokens ({_TOKEN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                token.access_token,
                _to_ms(token.access_token_expires_at),
                token.refresh_token,
                _to_ms(token.refresh_token_expires_at),
                token.scope,
                token.client_id,
                token.user_id,
            ),
        )

    async def get_access_token(self, access_token: str) -> Optional[Token]:
        row = await self._fetchone(
            f"SELECT {_TOKEN_COLUMNS} FROM tokens WHERE access_token = ?", (access_token,)
        )
        return self._row_to_token(row) if row else None

    async def get_refresh_token(self, refresh_token: str) -> Optional[Token]:
        row = await self._fetchone(
            f"SELECT {_TOKEN_COLUMNS} FROM tokens WHERE refresh_token = ?", (refresh_token,)
        )
        return self._row_to_token(row) if row else None

    async def consume_refresh_token(self, refresh_token: str) -> bool:
        count = await self._write(
            "UPDATE tokens SET refresh_token = NULL, refresh_token_expires_at = NULL "
            "WHERE refresh_token = ?",
            (refresh_token,),
        )
        return count == 1

    # ========== Authorization codes ==========

    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        await self._write(
            f"INSERT INTO authorization_codes ({_CODE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (
                code.code,
                _to_ms(code.expires_at),
                code.redirect_uri,
                code.scope,
                code.client_id,
                code.user_id,
            ),
        )

    async def get_authorization_code(self, code: str) -> Optional[AuthorizationCode]:
        row = await self._fetchone(
            f"SELECT {_CODE_COLUMNS} FROM authorization_codes WHERE code = ?", (code,)
        )
        if row is None:
            return None
        return AuthorizationCode(
            code=row["code"],
            expires_at=_from_ms(row["expires_at"]),
            redirect_uri=row["redirect_uri"],
            scope=row["scope"],
            client_id=row["client_id"],
            user_id=row["user_id"],
        )

    async def consume_authorization_code(self, code: str) -> bool:
        count = await self._write("DELETE FROM authorization_codes WHERE code = ?", (code,))
        return count == 1

    # ========== Maintenance ==========

    async def purge_expired(self) -> Dict[str, int]:
        now = _to_ms(utcnow())
        codes = await self._write("DELETE FROM authorization_codes WHERE expires_at <= ?", (now,))
        await self._write(
            "UPDATE tokens SET refresh_token = NULL, refresh_token_expires_at = NULL "
            "WHERE refresh_token_expires_at <= ?",
            (now,),
        )
        tokens = await self._write(
            "DELETE FROM tokens WHERE access_token_expires_at <= ? AND refresh_token IS NULL",
            (now,),
        )
        return {"codes": codes, "tokens": tokens}

    async def purge(self) -> None:
        """Delete all data."""
        try:
            async with self._write_lock:
                for table in ("users", "clients", "tokens", "authorization_codes"):
                    await self._db.execute(f"DELETE FROM {table}")
                await self._db.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to purge storage: {e}") from e
