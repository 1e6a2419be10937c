"""
Opaque credential minting.

Access tokens, refresh tokens and authorization codes are the SHA-256 hex
digest of a millisecond timestamp joined with fresh randomness from the OS
CSPRNG. Client secrets and record identifiers come from the same source.

Author: OAuthKeeper Team
Date: 2026-02-03
"""

import base64
import hashlib
import secrets
import string
import time

_ALPHANUMERIC = string.ascii_letters + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


def random_string(length: int) -> str:
    """Random alphanumeric string of the given length."""
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def generate_token() -> str:
    """Mint an access token, refresh token or authorization code (64 hex chars)."""
    seed = f"{_now_ms()}-{secrets.token_hex(16)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def generate_client_secret() -> str:
    """Mint a client secret: unpadded base64 of a SHA-256 digest."""
    seed = f"{_now_ms()}-{random_string(24)}"
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii").rstrip("=")


def generate_id() -> str:
    """Identifier for users and clients: ``<epoch ms>-<8 random chars>``."""
    return f"{_now_ms()}-{random_string(8)}"
