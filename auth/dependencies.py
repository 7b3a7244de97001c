"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every helper goes through the request's AuthContext, so the session and
remember cookie are resolved at most once per request no matter how many
dependencies ask.

get_auth() hands out the AuthContext itself.
try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() raises HTTP 401 unless an admin is logged in via the session.

Layer rule: no imports from web/ or community/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.context import AuthContext
from auth.models import Admin, IdentityKind, User


def get_auth(request: Request) -> AuthContext:
    """Return the request-scoped AuthContext."""
    return AuthContext.from_request(request)


def try_get_current_user(request: Request) -> User | None:
    """Resolve the current user from the session or remember cookie.

    Returns None when nobody is logged in. A session pointing at a deleted
    user still raises IdentityNotFoundError.
    """
    auth = get_auth(request)
    auth.is_logged_in(IdentityKind.USER)
    return auth.current_user


def get_current_user(request: Request) -> User:
    """Require a logged-in user. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> Admin:
    """Require a logged-in admin. Raises HTTP 401 otherwise.

    Admins are only ever resolved from the session; a remember cookie never
    grants admin access.
    """
    auth = get_auth(request)
    if not auth.is_logged_in(IdentityKind.ADMIN):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Administrator login required."},
        )
    return auth.current_admin
