"""
Shared fixtures: credential stores for both backends and a seeded data set.

Seeded users (all @example.com, password equal to the local part unless
noted): user/test, admin, manager, dev1, dev2 and a disabled account.
Seeded clients: ``clientAll`` (secret "2", every grant, owner dev1) and
``clientNoAuthCode`` (secret "3", no authorization_code grant, owner dev2).

The ``api`` fixture serves a seeded in-memory store through the full
application; ``auth_headers`` signs a seeded user in over the session API.
"""

import asyncio
import tempfile
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from oauthkeeper.app import create_app
from oauthkeeper.core.config_manager import OAuthKeeperConfig
from oauthkeeper.models import GRANT_TYPES, NewClient, NewUser, utcnow
from oauthkeeper.oauth.passwords import PasswordHasher
from oauthkeeper.storage import (
    InMemoryStorage,
    SQLiteStorage,
    StorageConfig,
    StorageType,
)


REDIRECT_1 = "http://localhost:3000/test1"
REDIRECT_2 = "http://localhost:3000/test2"
REDIRECT_3 = "http://localhost:3000/test3"

SEED_USERS = {
    "user": ("user@example.com", "test", {}),
    "admin": ("admin@example.com", "admin", {"admin": True}),
    "manager": ("manager@example.com", "manager", {"manager": True}),
    "dev1": ("dev1@example.com", "dev1", {"dev": True}),
    "dev2": ("dev2@example.com", "dev2", {"dev": True}),
    "disabled": ("disabled@example.com", "disabled", {}),
}


async def seed_store(store) -> dict:
    """
    Populate a store with the standard data set.

    Returns:
        Mapping of seed name to user ID, e.g. ``ids["dev1"]``
    """
    now = utcnow()
    ids = {}
    for index, (key, (email, password, roles)) in enumerate(SEED_USERS.items()):
        user_id = f"user-{key}"
        await store.add_user(
            NewUser(
                email=email,
                password=password,
                name=key.capitalize(),
                roles=roles,
                validated=now,
                disabled=(key == "disabled"),
            ),
            user_id,
            now + timedelta(milliseconds=index),
        )
        ids[key] = user_id

    await store.add_client(store.new_client_record(
        NewClient(
            user_id=ids["dev1"],
            redirect_uris=[REDIRECT_1, REDIRECT_2],
            scopes=["rw", "r"],
            grants=list(GRANT_TYPES),
            name="All grants",
        ),
        "clientAll", "2", now,
    ))
    await store.add_client(store.new_client_record(
        NewClient(
            user_id=ids["dev2"],
            redirect_uris=[REDIRECT_3],
            scopes=["rw", "r"],
            grants=["password", "client_credentials", "refresh_token"],
            name="No auth code",
        ),
        "clientNoAuthCode", "3", now + timedelta(milliseconds=1),
    ))
    return ids


@pytest.fixture
def temp_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def sqlite_store(temp_dir):
    """Create SQLite credential store."""
    config = StorageConfig(
        storage_type=StorageType.SQLITE,
        sqlite_path=str(temp_dir / "test.db"),
        wal_enabled=True,
    )
    store = SQLiteStorage(config, PasswordHasher())
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(params=["in-memory", "sqlite"])
async def store(request, temp_dir):
    """Credential store, once per backend."""
    if request.param == "sqlite":
        config = StorageConfig(
            storage_type=StorageType.SQLITE,
            sqlite_path=str(temp_dir / "store.db"),
        )
        backend = SQLiteStorage(config, PasswordHasher())
    else:
        backend = InMemoryStorage(StorageConfig(), PasswordHasher())
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
async def seeded_store(store):
    """Store populated with the standard data set; yields ``(store, ids)``."""
    ids = await seed_store(store)
    yield store, ids


def auth_headers(client: TestClient, key: str) -> dict:
    """Open a session for a seeded user and return its bearer header."""
    email, password, _ = SEED_USERS[key]
    response = client.post("/api/session/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


@pytest.fixture
def api_config():
    return OAuthKeeperConfig(oauth={"state_secret": "test-state-secret"})


@pytest.fixture
def api(api_config):
    """TestClient over a seeded in-memory store; yields ``(client, store, ids)``."""
    store = InMemoryStorage(StorageConfig(), PasswordHasher())
    ids = asyncio.run(seed_store(store))
    app = create_app(api_config, store=store)
    with TestClient(app) as client:
        yield client, store, ids
