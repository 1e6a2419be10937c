"""
Credential Store

Pluggable persistence for users, clients, tokens and authorization codes.

Author: OAuthKeeper Team
Date: 2026-02-05
"""

from .interface import (
    ClientQuery,
    CredentialStore,
    DuplicateKeyError,
    StorageConfig,
    StorageError,
    StorageInitializationError,
    StorageIOError,
    StorageType,
    UserQuery,
)
from .inmemory import InMemoryStorage
from .sqlite import SQLiteStorage
from .factory import create_credential_store

__all__ = [
    "ClientQuery",
    "CredentialStore",
    "DuplicateKeyError",
    "StorageConfig",
    "StorageError",
    "StorageInitializationError",
    "StorageIOError",
    "StorageType",
    "UserQuery",
    "InMemoryStorage",
    "SQLiteStorage",
    "create_credential_store",
]
