"""
Credential Records.

Pydantic models for the four records owned by the credential store: users,
clients, authorization codes and tokens. Field aliases give the camelCase
names used on the wire; Python code uses the snake_case attributes.

Author: OAuthKeeper Team
Date: 2026-02-03
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_PASSWORD = "password"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_REFRESH_TOKEN = "refresh_token"

GRANT_TYPES = (
    GRANT_AUTHORIZATION_CODE,
    GRANT_PASSWORD,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_REFRESH_TOKEN,
)

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_DEV = "dev"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self, exclude: Optional[set] = None) -> Dict[str, Any]:
        """Serialize with wire names and ISO-8601 dates."""
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


class User(_Record):
    """A resource owner.

    ``expired`` is the deadline for validating the account. It is kept for
    administrators and is not enforced at login; only ``disabled`` blocks
    authentication.
    """

    user_id: str = Field(..., alias="userId")
    email: str
    created: datetime
    validated: Optional[datetime] = None
    expired: Optional[datetime] = None
    disabled: bool = False
    roles: Dict[str, bool] = Field(default_factory=dict)
    password: str
    salt: str
    name: str = ""
    info: Dict[str, Any] = Field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return bool(self.roles.get(role))

    def public(self) -> Dict[str, Any]:
        """User as returned by the API: no password material."""
        return self.to_json(exclude={"password", "salt"})


class NewUser(BaseModel):
    """Fields accepted when creating a user; the store hashes the password."""

    email: str
    password: str
    name: str = ""
    info: Dict[str, Any] = Field(default_factory=dict)
    roles: Dict[str, bool] = Field(default_factory=dict)
    validated: Optional[datetime] = None
    expired: Optional[datetime] = None
    disabled: bool = False


class Client(_Record):
    """A registered OAuth2 client.

    ``scopes`` of ``None`` marks an administrative client without scope
    restriction.
    """

    id: str
    created: datetime
    client_secret: str = Field(..., alias="clientSecret")
    redirect_uris: List[str] = Field(default_factory=list, alias="redirectUris")
    scopes: Optional[List[str]] = None
    grants: List[str] = Field(default_factory=list)
    user_id: str = Field(..., alias="userId")
    name: str = ""
    image: str = ""

    def allows_grant(self, grant_type: str) -> bool:
        return grant_type in self.grants


class NewClient(BaseModel):
    """Fields accepted when registering a client; id and secret are generated."""

    user_id: str
    redirect_uris: List[str] = Field(default_factory=list)
    scopes: Optional[List[str]] = None
    grants: List[str] = Field(default_factory=list)
    name: str = ""
    image: str = ""


class AuthorizationCode(_Record):
    """A single-use code issued at consent time."""

    code: str
    expires_at: datetime = Field(..., alias="expiresAt")
    redirect_uri: str = Field(..., alias="redirectUri")
    scope: Optional[str] = None
    client_id: str = Field(..., alias="clientId")
    user_id: str = Field(..., alias="userId")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class Token(_Record):
    """An access token, optionally paired with a refresh token.

    ``client_id`` is empty for session tokens issued by ``/api/session``;
    ``user_id`` is ``None`` for client-credentials tokens.
    """

    access_token: str = Field(..., alias="accessToken")
    access_token_expires_at: datetime = Field(..., alias="accessTokenExpiresAt")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    refresh_token_expires_at: Optional[datetime] = Field(default=None, alias="refreshTokenExpiresAt")
    scope: Optional[str] = None
    client_id: str = Field(..., alias="clientId")
    user_id: Optional[str] = Field(default=None, alias="userId")

    def access_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.access_token_expires_at

    def refresh_expired(self, now: Optional[datetime] = None) -> bool:
        if self.refresh_token_expires_at is None:
            return True
        return (now or utcnow()) >= self.refresh_token_expires_at
