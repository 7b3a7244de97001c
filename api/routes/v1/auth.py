"""
api/routes/v1/auth.py -- JSON authentication endpoints.

Routes:
  POST /api/v1/auth/login   -- member password login; sets session (+ remember cookie)
  POST /api/v1/auth/logout  -- logout; ?kill_session=false keeps the session
  GET  /api/v1/auth/me      -- the member the session / remember cookie resolves to
  GET  /api/v1/auth/admin   -- the administrator logged in on this session

These endpoints drive the same AuthContext as the HTML routes, so a browser
that logs in here is logged in on the web pages too.

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import AdminInfo, LoginRequest, MessageResponse, UserInfo
from auth.context import AuthContext
from auth.dependencies import get_auth, get_current_user, require_admin
from auth.models import Admin, User
from auth.store import UserStore, to_iso
from auth.tokens import authenticate_user
from core.config import get_settings
from core.limiter import limiter

logger = logging.getLogger("commons.api")

router = APIRouter()


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        instance_id=user.instance_id,
        login=user.login,
        last_login=to_iso(user.last_login),
        remembered_until=to_iso(user.remember_token_expires_at) if user.remember_token else None,
    )


@limiter.limit(get_settings().login_rate_limit)
@router.post("/auth/login", response_model=UserInfo)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate a member and log them in on this session.

    Returns the same generic error for wrong login and wrong password to avoid
    leaking which logins exist.
    """
    user_store: UserStore = request.app.state.user_store
    auth = AuthContext.from_request(request)
    auth.resolve_discarding_stale()
    auth.logout_keeping_session()

    user = authenticate_user(user_store, body.instance_id, body.login, body.password)
    if user is None:
        logger.warning("Failed API login for %r on instance %s", body.login, body.instance_id)
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid login or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    auth.login_as(user)
    auth.handle_remember_cookie(body.remember_me)
    logger.info("User %s logged in via API (remember_me=%s)", user.id, body.remember_me)
    resp = JSONResponse(content=_user_info(user).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(kill_session: bool = True, auth: AuthContext = Depends(get_auth)) -> MessageResponse:
    """Log out every identity on this browser."""
    auth.resolve_discarding_stale()
    auth.logout(kill_session=kill_session)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=UserInfo)
def me(user: User = Depends(get_current_user)) -> UserInfo:
    """Return the logged-in member. 401 when nobody is."""
    return _user_info(user)


@router.get("/auth/admin", response_model=AdminInfo)
def admin(current: Admin = Depends(require_admin)) -> AdminInfo:
    """Return the logged-in administrator. 401 unless one is on the session."""
    return AdminInfo(id=current.id, login=current.login)
