"""
auth/tokens.py -- Password hashing and remember-token lifecycle.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether a login exists.

  Remember tokens: secrets.token_hex(20) gives 160 bits of entropy. A token is
       live only while it is non-empty and its expiry lies in the future.
       refresh_token() rotates the value but keeps the expiry, so a remember
       cookie cannot be extended indefinitely by replaying it; only an explicit
       "remember me" (remember_me()) starts a new window.

Every mutating helper persists through the UserStore immediately -- there is
no unit of work to flush later.

Layer rule: no imports from api/, web/ or community/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Admin, User
    from auth.store import UserStore

logger = logging.getLogger("commons.auth")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("commons_timing_dummy")


def authenticate_user(store: UserStore, instance_id: int, login: str, password: str) -> User | None:
    """Check a member's credentials within one instance.

    Always runs bcrypt whether or not the login exists. Returns the User on
    success, None on any failure.
    """
    user = store.get_by_login(instance_id, login)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def authenticate_admin(store: UserStore, login: str, password: str) -> Admin | None:
    """Check an administrator's credentials. Same timing rules as authenticate_user()."""
    admin = store.get_admin_by_login(login)
    if admin is None or admin.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, admin.hashed_password):
        return None
    return admin


# ---------------------------------------------------------------------------
# Remember tokens
# ---------------------------------------------------------------------------


def make_token() -> str:
    return secrets.token_hex(20)


def remember_token_is_live(user: User, now: datetime | None = None) -> bool:
    """Return True if the user holds a non-empty, unexpired remember token."""
    if not user.remember_token or user.remember_token_expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now < user.remember_token_expires_at


def remember_me(store: UserStore, user: User, days: int | None = None) -> None:
    """Issue a brand-new remember token with a fresh expiry window."""
    if days is None:
        days = get_settings().remember_token_days
    user.remember_token = make_token()
    user.remember_token_expires_at = datetime.now(timezone.utc) + timedelta(days=days)
    store.save_user(user)
    logger.info("Issued remember token for user %s (expires %s)", user.id, user.remember_token_expires_at.isoformat())


def refresh_token(store: UserStore, user: User) -> None:
    """Rotate the token value while keeping the current expiry.

    A user without a live token is left alone; refreshing only makes sense
    for a token that is still valid.
    """
    if not remember_token_is_live(user):
        return
    user.remember_token = make_token()
    store.save_user(user)


def forget_me(store: UserStore, user: User) -> None:
    """Clear the user's remember token and expiry."""
    user.remember_token = None
    user.remember_token_expires_at = None
    store.save_user(user)
