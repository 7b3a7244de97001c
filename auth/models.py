"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
request-scoped AuthContext do the work.

Layer rule: no imports from api/, web/ or community/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union


class IdentityKind(str, Enum):
    """Which session slot an identity occupies.

    The value is the session key, so IdentityKind.USER.value == "user_id".
    """

    USER = "user_id"
    ADMIN = "admin_id"


@dataclass
class User:
    """A member of one instance (tenant).

    remember_token / remember_token_expires_at back the "remember me" cookie.
    Both are None when the user has no live remember cookie. The token stored
    here is the raw value sent to the browser; it is random, single-purpose
    and rotated on every cookie login.
    """

    instance_id: int
    login: str
    id: int | None = None
    email: str | None = None
    hashed_password: str | None = None
    last_login: datetime | None = None
    last_logout: datetime | None = None
    remember_token: str | None = None
    remember_token_expires_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Admin:
    """A platform administrator. Not scoped to any instance."""

    login: str
    id: int | None = None
    hashed_password: str | None = None
    created_at: datetime | None = None


Identity = Union[User, Admin]


def kind_of(identity: Identity) -> IdentityKind:
    """Return the session slot kind matching the identity's type."""
    return IdentityKind.ADMIN if isinstance(identity, Admin) else IdentityKind.USER
