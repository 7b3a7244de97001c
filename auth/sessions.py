"""
auth/sessions.py -- Server-side session store and the middleware that binds it
to each request.

Why server-side: logging out with "kill session" must make the old session id
worthless. A signed client-side session (Starlette's SessionMiddleware) can be
replayed after logout because the server keeps no record of it. Here the
browser only holds a signed, opaque session id; the slots live in the
`sessions` table and are deleted on reset.

Cookie format: itsdangerous TimestampSigner over the session id, keyed by
SECRET_KEY -- the same signing scheme Starlette's SessionMiddleware uses.

Session lifecycle per request (SessionMiddleware.dispatch):
  1. Unsign the cookie and load the slots (missing / expired / forged -> empty).
  2. Expose them as request.state.session (a Session dict).
  3. After the handler: apply any cookie writes queued on request.state.auth,
     then persist the session if it changed, rotating the id on reset().

Layer rule: no imports from api/, web/ or community/.
"""

from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone

from itsdangerous import BadSignature, TimestampSigner
from sqlalchemy import Column, MetaData, String, Table, Text
from sqlalchemy.engine import Engine
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from auth.store import from_iso, make_engine, to_iso
from core.config import get_settings

logger = logging.getLogger("commons.sessions")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("data", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


class Session(dict):
    """The slots of one browser session for the duration of a request.

    session_id is None until the session is first persisted. reset() empties
    the slots and marks the current id for destruction; anything written
    afterwards is saved under a brand-new id.
    """

    def __init__(self, session_id: str | None = None, data: dict | None = None) -> None:
        super().__init__(data or {})
        self.session_id = session_id
        self.reset_requested = False
        self._loaded = dict(self)

    @property
    def changed(self) -> bool:
        return self.reset_requested or dict(self) != self._loaded

    def reset(self) -> None:
        self.clear()
        self.reset_requested = True


class SessionStore:
    """Repository for server-side sessions.

    Usage:
        store = SessionStore()
        sid = store.save(None, {"user_id": 7})
        store.load(sid)   # {"user_id": 7}
        store.delete(sid)
    """

    def __init__(self, db_url: str | None = None, max_age: int | None = None) -> None:
        settings = get_settings()
        self.max_age = max_age if max_age is not None else settings.session_max_age_seconds
        self.engine: Engine = make_engine(db_url or settings.database_url)
        _metadata.create_all(self.engine)

    def load(self, session_id: str) -> dict | None:
        """Return the slots of a live session, or None if unknown or expired.

        Expired rows are deleted on sight.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if from_iso(row.expires_at) <= datetime.now(timezone.utc):
            self.delete(session_id)
            return None
        return json.loads(row.data)

    def save(self, session_id: str | None, data: dict) -> str:
        """Insert or replace a session and return its id.

        A None session_id allocates a fresh random id. Every save pushes the
        expiry max_age seconds into the future.
        """
        now = datetime.now(timezone.utc)
        values = {
            "data": json.dumps(data),
            "expires_at": to_iso(now + timedelta(seconds=self.max_age)),
        }
        with self.engine.connect() as conn:
            if session_id is not None:
                result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(**values))
                if result.rowcount > 0:
                    conn.commit()
                    return session_id
            session_id = secrets.token_urlsafe(32)
            conn.execute(_sessions.insert().values(id=session_id, created_at=to_iso(now), **values))
            conn.commit()
        return session_id

    def delete(self, session_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        cutoff = to_iso(datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class SessionMiddleware(BaseHTTPMiddleware):
    """Load the server-side session before the handler and persist it after.

    The SessionStore is looked up on app.state.session_store at request time
    so the lifespan (or a test) decides which database backs it.
    """

    def __init__(self, app, secret_key: str | None = None) -> None:
        super().__init__(app)
        settings = get_settings()
        self.signer = TimestampSigner(secret_key or settings.secret_key)
        self.cookie_name = settings.session_cookie_name
        self.max_age = settings.session_max_age_seconds
        self.secure = settings.secure_cookies

    def _unsign(self, cookie: str | None) -> str | None:
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie, max_age=self.max_age).decode("utf-8")
        except BadSignature:
            logger.warning("Rejected session cookie with a bad or expired signature")
            return None

    async def dispatch(self, request: Request, call_next) -> Response:
        store: SessionStore = request.app.state.session_store
        session_id = self._unsign(request.cookies.get(self.cookie_name))
        data = store.load(session_id) if session_id else None
        session = Session(session_id if data is not None else None, data)
        request.state.session = session

        response = await call_next(request)

        auth = getattr(request.state, "auth", None)
        if auth is not None:
            auth.write_cookies(response)
        self._commit(store, session, response)
        return response

    def _commit(self, store: SessionStore, session: Session, response: Response) -> None:
        if not session.changed:
            return
        old_id = session.session_id
        if session.reset_requested and old_id is not None:
            store.delete(old_id)
            logger.info("Session reset; old id destroyed")
            old_id = None
        if not session:
            if session.session_id is not None:
                store.delete(session.session_id)
            response.delete_cookie(self.cookie_name)
            return
        new_id = store.save(old_id, dict(session))
        response.set_cookie(
            self.cookie_name,
            value=self.signer.sign(new_id).decode("utf-8"),
            max_age=self.max_age,
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )
