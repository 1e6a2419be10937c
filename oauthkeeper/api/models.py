"""
API Request Models.

Pydantic models for request bodies on the ``/api`` routes. Wire names are
camelCase (``refreshToken``, ``redirectUris``); Python code uses the
snake_case attributes.

Author: OAuthKeeper Team
Date: 2026-02-08
"""

import re
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from oauthkeeper.models import GRANT_TYPES


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ROLE_PATTERN = re.compile(r"^[A-Za-z]+[A-Za-z0-9]*$")


def _check_email(value: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError("must be an email address")
    return value


def _check_unique(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is not None and len(set(values)) != len(values):
        raise ValueError("items must be unique")
    return values


def _check_grants(values: List[str]) -> List[str]:
    for grant in values:
        if grant not in GRANT_TYPES:
            raise ValueError(f"unsupported grant: {grant}")
    return _check_unique(values)


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Fields where an explicit null is a meaningful value
    nullable: ClassVar[Tuple[str, ...]] = ()

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually sent, keyed by attribute name."""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name in self.nullable
        }


class _Changes(_Body):
    """Update body: at least one field must be sent."""

    @model_validator(mode="after")
    def require_one(self):
        if not self.model_fields_set:
            raise ValueError("at least one parameter is required")
        return self


# ========== Sessions ==========

class SessionLogin(_Body):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class SessionRefresh(_Body):
    refresh_token: Any = Field(default=None, alias="refreshToken")


class SessionLogout(_Body):
    refresh_token: str = Field(..., min_length=1, alias="refreshToken")


# ========== Users ==========

class UserCreate(_Body):
    """Admin-created account. The account starts unvalidated."""

    email: str
    password: str = Field(..., min_length=1)
    name: str = ""
    info: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _check_email(v)


class UserSelfUpdate(_Changes):
    password: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = None
    info: Optional[Dict[str, Any]] = None


class UserAdminUpdate(_Changes):
    """
    Admin or manager update of another account.

    Setting ``validated`` also clears ``expired``. Managers may only change
    ``disabled`` and ``roles``; the route drops the other fields for them.
    """

    nullable = ("validated",)

    validated: Optional[datetime] = None
    disabled: Optional[bool] = None
    roles: Optional[Dict[str, bool]] = None
    password: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = None
    info: Optional[Dict[str, Any]] = None

    @field_validator("validated")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("roles")
    @classmethod
    def check_roles(cls, v: Optional[Dict[str, bool]]) -> Optional[Dict[str, bool]]:
        if v is not None:
            for key in v:
                if not ROLE_PATTERN.match(key):
                    raise ValueError(f"invalid role name: {key}")
        return v


# ========== Clients ==========

class ClientCreate(_Body):
    redirect_uris: List[str] = Field(..., alias="redirectUris")
    scopes: Optional[List[str]] = Field(...)
    grants: List[str]
    user_id: Optional[str] = Field(default=None, alias="userId")
    name: str = ""
    image: str = ""

    @field_validator("redirect_uris", "scopes")
    @classmethod
    def check_unique(cls, v):
        return _check_unique(v)

    @field_validator("grants")
    @classmethod
    def check_grants(cls, v: List[str]) -> List[str]:
        return _check_grants(v)


class ClientUpdate(_Changes):
    nullable = ("scopes",)

    redirect_uris: Optional[List[str]] = Field(default=None, alias="redirectUris")
    scopes: Optional[List[str]] = None
    name: Optional[str] = None
    image: Optional[str] = None

    @field_validator("redirect_uris", "scopes")
    @classmethod
    def check_unique(cls, v):
        return _check_unique(v)
