"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_admin are the mappers.
Route and context code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  remember_token has a UNIQUE index so a cookie resolves to at most one user.
  SQLite treats NULLs as distinct, so users without a token do not collide.

Timestamps are stored as ISO 8601 text in UTC and mapped back to aware
datetime objects.

Layer rule: no imports from api/, web/ or community/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Admin, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("instance_id", Integer, nullable=False),
    Column("login", String(255), nullable=False),
    Column("email", String(255)),
    Column("hashed_password", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("last_logout", String(32)),
    Column("remember_token", String(64), unique=True),
    Column("remember_token_expires_at", String(32)),
    UniqueConstraint("instance_id", "login", name="uq_users_instance_login"),
)

_admins = Table(
    "admins",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks every store in Commons needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Admin entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(instance_id=1, login="ada", hashed_password=hash_password("secret")))
        user = store.get_by_id(uid)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the login is already taken
        within the same instance.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    instance_id=user.instance_id,
                    login=user.login,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_login(self, instance_id: int, login: str) -> User | None:
        """Look up a user by login within one instance. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.instance_id == instance_id) & (_users.c.login == login))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_remember_token(self, token: str) -> User | None:
        """Look up the user holding the given remember token.

        An empty token never matches, even though forgotten users store NULL.
        Expiry is not checked here; see auth.tokens.remember_token_is_live().
        """
        if not token:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.remember_token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, instance_id: int) -> list[User]:
        """Return all users of an instance ordered by login."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.instance_id == instance_id).order_by(_users.c.login)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def save_user(self, user: User) -> bool:
        """Persist the mutable auth fields of an already stored user.

        Returns True if a row was updated, False if user.id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user.id)
                .values(
                    email=user.email,
                    last_login=to_iso(user.last_login),
                    last_logout=to_iso(user.last_logout),
                    remember_token=user.remember_token or None,
                    remember_token_expires_at=to_iso(user.remember_token_expires_at),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Sessions that still reference the user are left in place; the next
        request on such a session raises IdentityNotFoundError.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Admin queries
    # ------------------------------------------------------------------

    def create_admin(self, admin: Admin) -> int:
        """Insert a new administrator and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _admins.insert().values(
                    login=admin.login,
                    hashed_password=admin.hashed_password,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_admin_by_id(self, admin_id: int) -> Admin | None:
        with self.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.id == admin_id)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def get_admin_by_login(self, login: str) -> Admin | None:
        with self.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.login == login)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def delete_admin(self, admin_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_admins.delete().where(_admins.c.id == admin_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        instance_id=row.instance_id,
        login=row.login,
        email=row.email,
        hashed_password=row.hashed_password,
        created_at=from_iso(row.created_at),
        last_login=from_iso(row.last_login),
        last_logout=from_iso(row.last_logout),
        remember_token=row.remember_token,
        remember_token_expires_at=from_iso(row.remember_token_expires_at),
    )


def _row_to_admin(row) -> Admin:
    return Admin(
        id=row.id,
        login=row.login,
        hashed_password=row.hashed_password,
        created_at=from_iso(row.created_at),
    )
