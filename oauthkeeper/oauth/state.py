"""
Signed state carrier.

The authorization request (client_id, redirect_uri, scope, state and, after
login, user_id) travels through the login and consent pages as a single
opaque string: an HS256 JWT whose ``d`` claim holds the request, with
``iat``/``exp`` bounding its lifetime to ``max_age`` seconds.

Author: OAuthKeeper Team
Date: 2026-02-04
"""

import logging
import secrets
import time
from typing import Any, Dict, Optional

import jwt

from .exceptions import InvalidRequestError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class StateSigner:
    """Signs and verifies state carriers."""

    def __init__(self, secret: Optional[str] = None, max_age: int = 600):
        """
        Args:
            secret: Signing key. A random key is generated when omitted, which
                    ties carriers to this process; set one when running several
                    workers.
            max_age: Carrier lifetime in seconds
        """
        if secret is None:
            logger.warning("No state secret configured; using a per-process random key")
            secret = secrets.token_urlsafe(32)
        self._key = secret
        self.max_age = max_age

    def dumps(self, data: Dict[str, Any]) -> str:
        now = int(time.time())
        return jwt.encode({"d": data, "iat": now, "exp": now + self.max_age}, self._key, algorithm=ALGORITHM)

    def loads(self, carrier: Optional[str]) -> Dict[str, Any]:
        """
        Verify a carrier and return its data.

        Raises:
            InvalidRequestError: If the carrier is missing, tampered with or stale
        """
        if not carrier:
            raise InvalidRequestError("Invalid state")
        try:
            claims = jwt.decode(
                carrier,
                self._key,
                algorithms=[ALGORITHM],
                options={"require": ["iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidRequestError("State expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected state carrier: {type(e).__name__}")
            raise InvalidRequestError("Invalid state") from e

        data = claims.get("d")
        if not isinstance(data, dict):
            raise InvalidRequestError("Invalid state")
        return data
