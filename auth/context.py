"""
auth/context.py -- Request-scoped authentication state.

AuthContext answers "who is making this request?" and owns every transition
of that answer: login, login from the remember cookie, and logout.

Resolution order (resolve()):
  1. Session slots. user_id and admin_id are checked independently -- one
     request may carry both a current user and a current admin.
  2. The auth_token remember cookie, consulted only when the session yields
     no identity at all. Admins can never log in from a cookie.

Per-request state machine, per identity kind:
  anonymous --resolve_session/resolve_cookie/login_as--> authenticated
  authenticated --logout_keeping_session/logout_killing_session--> anonymous

Cookie writes are queued, not sent: the handler may build its response after
the context mutates cookies, so SessionMiddleware calls write_cookies() on
whatever response the handler returns. Reads through self.cookies observe the
queued writes, so validity checks later in the same request see the new value.

There is no process-wide "current admin". Everything lives on the instance
stored at request.state.auth.

Layer rule: no imports from api/, web/ or community/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from auth.exceptions import IdentityNotFoundError
from auth.models import Admin, Identity, IdentityKind, User, kind_of
from auth.tokens import forget_me, refresh_token, remember_me, remember_token_is_live
from core.config import get_settings

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from auth.store import UserStore

logger = logging.getLogger("commons.auth")


class AuthContext:
    """Authentication state for one request/response cycle.

    session  -- the mutable session slots (auth.sessions.Session or a dict)
    cookies  -- the cookies the browser sent
    store    -- the UserStore used to load and persist identities
    """

    def __init__(self, session, cookies: Mapping[str, str], store: UserStore) -> None:
        settings = get_settings()
        self.session = session
        self.cookies: dict[str, str] = dict(cookies)
        self.store = store
        self.cookie_name = settings.remember_cookie_name
        self.secure_cookies = settings.secure_cookies
        self._current_user: User | None = None
        self._current_admin: Admin | None = None
        self._session_checked = False
        self._cookie_checked = False
        self._cookie_writes: list[tuple[str, str | None, datetime | None]] = []

    @classmethod
    def from_request(cls, request: Request) -> AuthContext:
        """Return the request's AuthContext, creating it on first use."""
        auth = getattr(request.state, "auth", None)
        if auth is None:
            auth = cls(request.state.session, request.cookies, request.app.state.user_store)
            request.state.auth = auth
        return auth

    # ------------------------------------------------------------------
    # Current identity
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> User | None:
        return self._current_user

    @property
    def current_admin(self) -> Admin | None:
        return self._current_admin

    def is_logged_in(self, kind: IdentityKind = IdentityKind.USER) -> bool:
        """Resolve the identity of the given kind and report whether one exists.

        Users may come from the session or the remember cookie; admins only
        from the session.
        """
        if kind is IdentityKind.ADMIN:
            self.resolve_session()
            return self._current_admin is not None
        self.resolve()
        return self._current_user is not None

    # ------------------------------------------------------------------
    # Identity resolution
    # ------------------------------------------------------------------

    def resolve(self) -> Identity | None:
        """Resolve from the session, falling back to the remember cookie."""
        identity = self.resolve_session()
        if identity is None and not self._cookie_checked:
            self._cookie_checked = True
            identity = self.resolve_cookie()
        return identity

    def resolve_discarding_stale(self) -> Identity | None:
        """resolve(), but a slot naming a deleted identity counts as anonymous.

        For login and logout, which clear both slots right afterwards. Every
        other caller should let IdentityNotFoundError propagate.
        """
        try:
            return self.resolve()
        except IdentityNotFoundError as exc:
            logger.warning("Discarding stale session slot: %s", exc)
            return None

    def resolve_session(self) -> Identity | None:
        """Log in whatever identities the session slots point at.

        Runs at most once per request. Raises IdentityNotFoundError when a
        slot references a deleted user or admin.
        """
        if not self._session_checked:
            self._session_checked = True
            user_id = self.session.get(IdentityKind.USER.value)
            if user_id:
                user = self.store.get_by_id(user_id)
                if user is None:
                    raise IdentityNotFoundError("user", user_id)
                self.login_as(user)
            admin_id = self.session.get(IdentityKind.ADMIN.value)
            if admin_id:
                admin = self.store.get_admin_by_id(admin_id)
                if admin is None:
                    raise IdentityNotFoundError("admin", admin_id)
                self.login_as(admin, IdentityKind.ADMIN)
        return self._current_user or self._current_admin

    def resolve_cookie(self) -> User | None:
        """Log in the user whose live remember token matches the auth_token cookie.

        On success the token is rotated (expiry kept) and the cookie re-sent.
        An unknown or expired token leaves everything untouched.
        """
        token = self.cookies.get(self.cookie_name)
        if not token:
            return None
        user = self.store.get_by_remember_token(token)
        if user is None or not remember_token_is_live(user):
            return None
        self.login_as(user)
        self.handle_remember_cookie(False)
        logger.info("User %s logged in from remember cookie", user.id)
        return self._current_user

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login_as(self, identity: Identity | None, kind: IdentityKind = IdentityKind.USER) -> None:
        """Put identity (or nobody, when None) in the session slot for kind.

        The identity's type must match kind; a User cannot occupy the admin
        slot or vice versa. Logging in a User stamps last_login.
        Sets the session only -- remember cookies are handled separately.
        """
        if identity is not None and kind_of(identity) is not kind:
            raise ValueError(f"cannot log in {type(identity).__name__} into the {kind.value} slot")

        if identity is None:
            self.session.pop(kind.value, None)
        else:
            self.session[kind.value] = identity.id

        if isinstance(identity, User):
            identity.last_login = datetime.now(timezone.utc)
            self.store.save_user(identity)

        if kind is IdentityKind.USER:
            self._current_user = identity
        else:
            self._current_admin = identity

    def logout_keeping_session(self) -> None:
        """Log out without destroying the session, so other slots survive.

        Forgets the current user's remember token, deletes the remember
        cookie and clears both identity slots.
        """
        user = self._current_user
        if user is not None:
            user.last_logout = datetime.now(timezone.utc)
            forget_me(self.store, user)
            logger.info("User %s logged out", user.id)
        self.login_as(None)
        self.kill_remember_cookie()
        self.session.pop(IdentityKind.USER.value, None)
        self.session.pop(IdentityKind.ADMIN.value, None)
        self._current_admin = None

    def logout_killing_session(self) -> None:
        """Log out and reset the whole session, issuing a new session id."""
        self.logout_keeping_session()
        self.session.reset()

    def logout(self, kill_session: bool = True) -> None:
        if kill_session:
            self.logout_killing_session()
        else:
            self.logout_keeping_session()

    # ------------------------------------------------------------------
    # Remember cookie
    # ------------------------------------------------------------------

    def remember_cookie_is_valid(self) -> bool:
        """True iff the current user's live remember token equals the cookie."""
        user = self._current_user
        if user is None:
            return False
        return remember_token_is_live(user) and self.cookies.get(self.cookie_name) == user.remember_token

    def handle_remember_cookie(self, new_cookie: bool) -> None:
        """Refresh the remember cookie if valid, issue one if asked, else forget.

        A valid cookie gets a fresh token with the same expiry. An invalid one
        is replaced by a new token and expiry when new_cookie is set, otherwise
        the stored token is cleared.
        """
        user = self._current_user
        if user is None:
            return
        if self.remember_cookie_is_valid():
            refresh_token(self.store, user)
        elif new_cookie:
            remember_me(self.store, user)
        else:
            forget_me(self.store, user)
            logger.info("Remember cookie for user %s did not match; token forgotten", user.id)
        self.send_remember_cookie()

    def send_remember_cookie(self) -> None:
        """Queue the current user's token and expiry as the auth_token cookie.

        After forget_me() the token is empty, so the browser receives an empty
        session cookie that can never match a stored token.
        """
        user = self._current_user
        if user is None:
            return
        value = user.remember_token or ""
        self.cookies[self.cookie_name] = value
        self._cookie_writes.append((self.cookie_name, value, user.remember_token_expires_at))

    def kill_remember_cookie(self) -> None:
        self.cookies.pop(self.cookie_name, None)
        self._cookie_writes.append((self.cookie_name, None, None))

    @property
    def pending_cookies(self) -> list[tuple[str, str | None, datetime | None]]:
        """Queued (name, value, expires) writes; value None means delete."""
        return list(self._cookie_writes)

    def write_cookies(self, response: Response) -> None:
        """Apply queued cookie writes to the outgoing response, in order."""
        for name, value, expires in self._cookie_writes:
            if value is None:
                response.delete_cookie(name)
            else:
                response.set_cookie(
                    name,
                    value=value,
                    expires=expires,
                    httponly=True,
                    samesite="lax",
                    secure=self.secure_cookies,
                )
        self._cookie_writes.clear()
