"""
Password hashing.

PBKDF2-HMAC-SHA256 with a per-user random salt, computed by passlib and
stored as a 128-character hex digest. The default of 20 iterations matches
existing user databases; raise ``oauth.password_iterations`` for new
deployments.

Author: OAuthKeeper Team
Date: 2026-02-03
"""

from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq

from .minting import random_string


class PasswordHasher:
    """Salted one-way password hash."""

    DEFAULT_ITERATIONS = 20
    KEY_LENGTH = 64
    SALT_LENGTH = 8

    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        self.iterations = iterations

    def new_salt(self) -> str:
        return random_string(self.SALT_LENGTH)

    def hash(self, password: str, salt: str) -> str:
        """Hex digest of the password under the given salt."""
        return pbkdf2_hmac("sha256", password, salt, self.iterations, self.KEY_LENGTH).hex()

    def verify(self, password: str, salt: str, expected: str) -> bool:
        """Constant-time comparison of a candidate password with a stored hash."""
        return consteq(self.hash(password, salt), expected)

    def reject(self, password: str) -> bool:
        """Spend the cost of :meth:`verify` on an account that cannot log in."""
        self.hash(password, self.new_salt())
        return False
