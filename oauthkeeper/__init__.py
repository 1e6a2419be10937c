"""
OAuthKeeper - OAuth2 Authorization Server

Issues, validates, refreshes and revokes access tokens, refresh tokens and
authorization codes for registered clients acting on behalf of users.
"""

__version__ = "0.1.0"
__author__ = "OAuthKeeper Contributors"
__license__ = "MIT"

__all__ = ["__version__"]
