"""
Credential Store Factory

Creates the configured credential store backend.

Author: OAuthKeeper Team
Date: 2026-02-05
"""

from typing import Optional

from oauthkeeper.oauth.passwords import PasswordHasher

from .interface import CredentialStore, StorageConfig, StorageType, StorageError
from .inmemory import InMemoryStorage
from .sqlite import SQLiteStorage


def create_credential_store(
    config: StorageConfig,
    hasher: Optional[PasswordHasher] = None,
) -> CredentialStore:
    """
    Factory function to create a credential store based on configuration.

    Args:
        config: Storage configuration
        hasher: Password hasher for user credentials

    Returns:
        Uninitialized credential store; call ``initialize()`` before use

    Raises:
        StorageError: If storage type is unknown

    Example:
        ```python
        config = StorageConfig(
            storage_type=StorageType.SQLITE,
            sqlite_path="./data/oauthkeeper.db"
        )
        store = create_credential_store(config)
        await store.initialize()
        ```
    """
    if config.storage_type == StorageType.IN_MEMORY:
        return InMemoryStorage(config, hasher)

    elif config.storage_type == StorageType.SQLITE:
        return SQLiteStorage(config, hasher)

    else:
        raise StorageError(
            f"Unknown storage type: {config.storage_type}. "
            f"Supported types: {[t.value for t in StorageType]}"
        )
