"""
Tests for the credential store contract.

Every test runs against both the in-memory and the SQLite backend.

Author: OAuthKeeper Team
Date: 2026-02-11
"""

import asyncio
from datetime import timedelta

import pytest

from oauthkeeper.models import AuthorizationCode, NewUser, Token, utcnow
from oauthkeeper.oauth.passwords import PasswordHasher
from oauthkeeper.storage import (
    ClientQuery,
    DuplicateKeyError,
    InMemoryStorage,
    SQLiteStorage,
    StorageConfig,
    StorageError,
    StorageType,
    UserQuery,
    create_credential_store,
)


class CountingHasher(PasswordHasher):

    def __init__(self):
        super().__init__()
        self.calls = 0

    def hash(self, password, salt):
        self.calls += 1
        return super().hash(password, salt)


def make_token(access="a1", refresh="r1", user_id="user-user", client_id="clientAll",
               scope="rw", access_ttl=3600, refresh_ttl=7200):
    now = utcnow()
    return Token(
        access_token=access,
        access_token_expires_at=now + timedelta(seconds=access_ttl),
        refresh_token=refresh,
        refresh_token_expires_at=now + timedelta(seconds=refresh_ttl) if refresh else None,
        scope=scope,
        client_id=client_id,
        user_id=user_id,
    )


def make_code(code="c1", ttl=30, redirect_uri="http://localhost:3000/test1"):
    return AuthorizationCode(
        code=code,
        expires_at=utcnow() + timedelta(seconds=ttl),
        redirect_uri=redirect_uri,
        scope="rw",
        client_id="clientAll",
        user_id="user-user",
    )


class TestUsers:
    """User records."""

    async def test_add_and_get_user(self, seeded_store):
        """Stored users come back without the plain password."""
        store, ids = seeded_store
        user = await store.get_user(ids["user"])
        assert user.email == "user@example.com"
        assert user.password != "test"
        assert len(user.salt) > 0
        assert "password" not in user.public()
        assert "salt" not in user.public()

    async def test_email_is_case_folded(self, store):
        """Emails are stored lowercased and looked up case-insensitively."""
        await store.add_user(NewUser(email="Mixed@Example.COM", password="pw"), "u1", utcnow())
        user = await store.get_user_by_email("mixed@example.com")
        assert user is not None
        assert user.email == "mixed@example.com"

    async def test_duplicate_email_rejected(self, seeded_store):
        """A second account with the same email is refused."""
        store, _ = seeded_store
        with pytest.raises(DuplicateKeyError):
            await store.add_user(NewUser(email="USER@example.com", password="x"), "other", utcnow())

    async def test_credentials_valid(self, seeded_store):
        store, ids = seeded_store
        user = await store.get_user_by_credentials("User@Example.com", "test")
        assert user is not None
        assert user.user_id == ids["user"]

    @pytest.mark.parametrize("email,password", [
        ("user@example.com", "wrong"),
        ("nobody@example.com", "test"),
        ("disabled@example.com", "disabled"),
    ])
    async def test_credentials_rejected_alike(self, seeded_store, email, password):
        """Wrong password, unknown email and disabled account all yield None."""
        store, _ = seeded_store
        assert await store.get_user_by_credentials(email, password) is None

    @pytest.mark.parametrize("email,password", [
        ("user@example.com", "wrong"),
        ("nobody@example.com", "test"),
        ("disabled@example.com", "disabled"),
        ("user@example.com", "test"),
    ])
    async def test_credentials_cost_one_hash(self, seeded_store, email, password):
        """Every outcome runs exactly one password hash."""
        store, _ = seeded_store
        store.hasher = CountingHasher()
        await store.get_user_by_credentials(email, password)
        assert store.hasher.calls == 1

    async def test_credentials_account_is_trimmed(self, seeded_store):
        store, ids = seeded_store
        user = await store.get_user_by_credentials("  User@Example.com ", "test")
        assert user is not None
        assert user.user_id == ids["user"]

    async def test_update_password_rehashes(self, seeded_store):
        """A password change gets a new salt and the old password stops working."""
        store, ids = seeded_store
        before = await store.get_user(ids["user"])
        assert await store.update_user(ids["user"], {"password": "new-secret", "name": "Renamed"})

        after = await store.get_user(ids["user"])
        assert after.salt != before.salt
        assert after.name == "Renamed"
        assert await store.get_user_by_credentials("user@example.com", "test") is None
        assert await store.get_user_by_credentials("user@example.com", "new-secret") is not None

    async def test_update_unknown_field_rejected(self, seeded_store):
        store, ids = seeded_store
        with pytest.raises(ValueError):
            await store.update_user(ids["user"], {"email": "x@example.com"})

    async def test_update_missing_user(self, store):
        assert await store.update_user("missing", {"name": "x"}) is False

    async def test_remove_user(self, seeded_store):
        store, ids = seeded_store
        assert await store.remove_user(ids["user"]) is True
        assert await store.get_user(ids["user"]) is None
        assert await store.get_user_by_email("user@example.com") is None
        assert await store.remove_user(ids["user"]) is False

    async def test_count_and_filter(self, seeded_store):
        """``email`` is exact; ``contains`` is a substring match."""
        store, _ = seeded_store
        assert await store.count_users() == 6
        assert await store.count_users(UserQuery(email="dev1@example.com")) == 1
        assert await store.count_users(UserQuery(contains="dev")) == 2
        assert await store.count_users(UserQuery(email="dev", contains="dev")) == 0

    async def test_contains_treats_wildcards_literally(self, seeded_store):
        store, _ = seeded_store
        assert await store.count_users(UserQuery(contains="%")) == 0
        assert await store.count_users(UserQuery(contains="_")) == 0

    async def test_list_default_sort_and_paging(self, seeded_store):
        """Default order is email ascending; skip/limit page through it."""
        store, _ = seeded_store
        emails = [u.email for u in await store.list_users()]
        assert emails == sorted(emails)

        page = await store.list_users(UserQuery(skip=2, limit=2))
        assert [u.email for u in page] == emails[2:4]

    async def test_list_custom_sort(self, seeded_store):
        store, _ = seeded_store
        users = await store.list_users(UserQuery(sort=[("created", False)]))
        created = [u.created for u in users]
        assert created == sorted(created, reverse=True)


class TestClients:
    """Client records."""

    async def test_get_client_as_stored(self, seeded_store):
        store, ids = seeded_store
        client = await store.get_client("clientNoAuthCode")
        assert client.client_secret == "3"
        assert client.redirect_uris == ["http://localhost:3000/test3"]
        assert client.user_id == ids["dev2"]

    async def test_grant_lookup_checks_secret(self, seeded_store):
        store, _ = seeded_store
        assert await store.get_client_for_grant("clientAll", "2") is not None
        assert await store.get_client_for_grant("clientAll", "wrong") is None
        assert await store.get_client_for_grant("clientAll") is not None
        assert await store.get_client_for_grant("missing", "2") is None

    async def test_grant_lookup_hides_redirects_without_code_grant(self, seeded_store):
        """Clients without authorization_code expose no redirect URIs to flows."""
        store, _ = seeded_store
        client = await store.get_client_for_grant("clientNoAuthCode", "3")
        assert client.redirect_uris == []

        full = await store.get_client_for_grant("clientAll", "2")
        assert len(full.redirect_uris) == 2

    async def test_update_client(self, seeded_store):
        store, _ = seeded_store
        assert await store.update_client("clientAll", {"name": "Renamed", "scopes": None})
        client = await store.get_client("clientAll")
        assert client.name == "Renamed"
        assert client.scopes is None
        assert await store.update_client("missing", {"name": "x"}) is False

    async def test_list_and_count_by_owner(self, seeded_store):
        store, ids = seeded_store
        assert await store.count_clients() == 2
        assert await store.count_clients(ClientQuery(user_id=ids["dev1"])) == 1
        listed = await store.list_clients(ClientQuery(user_id=ids["dev2"]))
        assert [c.id for c in listed] == ["clientNoAuthCode"]

    async def test_remove_clients_of_user(self, seeded_store):
        store, ids = seeded_store
        assert await store.remove_clients_of_user(ids["dev1"]) == 1
        assert await store.get_client("clientAll") is None
        assert await store.get_client("clientNoAuthCode") is not None
        assert await store.remove_client("clientNoAuthCode") is True
        assert await store.remove_client("clientNoAuthCode") is False


class TestTokens:
    """Token records."""

    async def test_save_and_lookup(self, store):
        await store.save_token(make_token())
        by_access = await store.get_access_token("a1")
        by_refresh = await store.get_refresh_token("r1")
        assert by_access.refresh_token == "r1"
        assert by_refresh.access_token == "a1"
        assert by_access.scope == "rw"

    async def test_duplicate_access_token_rejected(self, store):
        await store.save_token(make_token())
        with pytest.raises(DuplicateKeyError):
            await store.save_token(make_token(refresh="r2"))

    async def test_token_without_refresh_or_user(self, store):
        """Client-credentials tokens carry neither refresh token nor user."""
        await store.save_token(make_token(refresh=None, user_id=None))
        token = await store.get_access_token("a1")
        assert token.refresh_token is None
        assert token.user_id is None
        assert token.refresh_expired()

    async def test_revoke_keeps_access_token(self, store):
        """Revoking by refresh token leaves the access token valid."""
        await store.save_token(make_token())
        assert await store.revoke_token("r1") is True
        assert await store.get_refresh_token("r1") is None
        assert await store.get_access_token("a1") is not None

    async def test_revoke_is_idempotent(self, store):
        assert await store.revoke_token("never-issued") is True

    async def test_consume_refresh_once(self, store):
        await store.save_token(make_token())
        assert await store.consume_refresh_token("r1") is True
        assert await store.consume_refresh_token("r1") is False

    async def test_concurrent_consume_refresh(self, store):
        """Of many concurrent consumers exactly one wins."""
        await store.save_token(make_token())
        results = await asyncio.gather(*(store.consume_refresh_token("r1") for _ in range(10)))
        assert results.count(True) == 1


class TestAuthorizationCodes:
    """Authorization code records."""

    async def test_save_and_get(self, store):
        await store.save_authorization_code(make_code())
        code = await store.get_authorization_code("c1")
        assert code.redirect_uri == "http://localhost:3000/test1"
        assert not code.is_expired()

    async def test_duplicate_code_rejected(self, store):
        await store.save_authorization_code(make_code())
        with pytest.raises(DuplicateKeyError):
            await store.save_authorization_code(make_code())

    async def test_revoke_idempotent(self, store):
        await store.save_authorization_code(make_code())
        assert await store.revoke_authorization_code("c1") is True
        assert await store.get_authorization_code("c1") is None
        assert await store.revoke_authorization_code("c1") is True

    async def test_concurrent_consume(self, store):
        await store.save_authorization_code(make_code())
        results = await asyncio.gather(*(store.consume_authorization_code("c1") for _ in range(10)))
        assert results.count(True) == 1
        assert await store.get_authorization_code("c1") is None


class TestScope:
    """Scope checks exposed by the store."""

    async def test_validate_scope(self, seeded_store):
        store, _ = seeded_store
        client = await store.get_client("clientAll")
        assert await store.validate_scope(None, client, "rw r") == "rw r"
        assert await store.validate_scope(None, client, "admin") is None
        assert await store.validate_scope(None, client, None) is None

    async def test_verify_scope(self, store):
        assert await store.verify_scope(make_token(scope="rw r"), "r") is True
        assert await store.verify_scope(make_token(scope="r"), "rw") is False
        assert await store.verify_scope(make_token(scope=None), "r") is False


class TestMaintenance:
    """Purging expired and all data."""

    async def test_purge_expired(self, store):
        """Expired codes go; a token row stays while its refresh token lives."""
        await store.save_authorization_code(make_code("old", ttl=-1))
        await store.save_authorization_code(make_code("fresh", ttl=30))
        await store.save_token(make_token("a-dead", "r-dead", access_ttl=-10, refresh_ttl=-5))
        await store.save_token(make_token("a-live", "r-live", access_ttl=-10, refresh_ttl=600))

        removed = await store.purge_expired()
        assert removed == {"codes": 1, "tokens": 1}
        assert await store.get_authorization_code("fresh") is not None
        assert await store.get_access_token("a-dead") is None
        assert await store.get_refresh_token("r-live") is not None

    async def test_purge(self, seeded_store):
        store, _ = seeded_store
        await store.save_token(make_token())
        await store.purge()
        assert await store.count_users() == 0
        assert await store.count_clients() == 0
        assert await store.get_access_token("a1") is None


class TestSQLitePersistence:
    """SQLite-specific behavior."""

    async def test_data_survives_reopen(self, temp_dir):
        config = StorageConfig(storage_type=StorageType.SQLITE, sqlite_path=str(temp_dir / "p.db"))
        first = SQLiteStorage(config, PasswordHasher())
        await first.initialize()
        await first.add_user(NewUser(email="keep@example.com", password="pw"), "keep", utcnow())
        await first.save_token(make_token(user_id="keep"))
        await first.close()

        second = SQLiteStorage(config, PasswordHasher())
        await second.initialize()
        try:
            assert await second.get_user_by_credentials("keep@example.com", "pw") is not None
            token = await second.get_access_token("a1")
            assert token.user_id == "keep"
        finally:
            await second.close()

    async def test_initialize_is_idempotent(self, sqlite_store):
        await sqlite_store.initialize()
        assert await sqlite_store.count_users() == 0


class TestFactory:
    """Backend selection."""

    def test_in_memory(self):
        store = create_credential_store(StorageConfig(storage_type=StorageType.IN_MEMORY))
        assert isinstance(store, InMemoryStorage)

    def test_sqlite(self, temp_dir):
        config = StorageConfig(storage_type=StorageType.SQLITE, sqlite_path=str(temp_dir / "f.db"))
        assert isinstance(create_credential_store(config), SQLiteStorage)

    def test_unknown_type(self):
        config = StorageConfig()
        config.storage_type = "redis"
        with pytest.raises(StorageError, match="Unknown storage type"):
            create_credential_store(config)
