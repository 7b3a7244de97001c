"""
community/store.py -- SQLAlchemy Core persistence for instances, groups and
memberships.

Pattern: Repository + Data Mapper. CommunityStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

get_* methods return None for a missing row; find_* methods raise
RecordNotFoundError, which the app turns into a 404.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CommunityStore("sqlite:///:memory:")
    iid = store.create_instance(Instance(name="Wesleyan"))
    gid = store.create_group(Group(instance_id=iid, name="Chess club"))
    store.add_membership(user_id=3, group_id=gid)
    store.close()
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, UniqueConstraint, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.exceptions import RecordNotFoundError
from auth.store import make_engine
from community.models import Group, Instance
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_instances = Table(
    "instances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("owner_id", Integer),
    Column("created_at", String(32), nullable=False),
)

_groups = Table(
    "groups",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("instance_id", Integer, nullable=False),
    Column("group_type_id", Integer, nullable=False, server_default="1"),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_memberships = Table(
    "memberships",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("group_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "group_id", name="uq_membership"),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CommunityStore:
    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def create_instance(self, instance: Instance) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _instances.insert().values(name=instance.name, owner_id=instance.owner_id, created_at=_now_iso())
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_instance(self, instance_id: int) -> Instance | None:
        with self.engine.connect() as conn:
            row = conn.execute(_instances.select().where(_instances.c.id == instance_id)).fetchone()
        return _row_to_instance(row) if row is not None else None

    def find_instance(self, instance_id: int) -> Instance:
        """Return the instance or raise RecordNotFoundError."""
        instance = self.get_instance(instance_id)
        if instance is None:
            raise RecordNotFoundError(f"No instance with id {instance_id!r}")
        return instance

    def set_owner(self, instance_id: int, owner_id: int | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_instances.update().where(_instances.c.id == instance_id).values(owner_id=owner_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, group: Group) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _groups.insert().values(
                    instance_id=group.instance_id,
                    group_type_id=group.group_type_id,
                    name=group.name,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_group(self, instance_id: int, group_id: int) -> Group:
        """Return a group of the given instance or raise RecordNotFoundError.

        A group id belonging to another instance is reported as missing.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _groups.select().where((_groups.c.id == group_id) & (_groups.c.instance_id == instance_id))
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"No group with id {group_id!r} in instance {instance_id!r}")
        return _row_to_group(row)

    def list_groups(self, instance_id: int) -> list[Group]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _groups.select().where(_groups.c.instance_id == instance_id).order_by(_groups.c.name)
            ).fetchall()
        return [_row_to_group(r) for r in rows]

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def is_member(self, user_id: int, group_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_memberships.c.id).where(
                    (_memberships.c.user_id == user_id) & (_memberships.c.group_id == group_id)
                )
            ).fetchone()
        return row is not None

    def add_membership(self, user_id: int, group_id: int) -> bool:
        """Add user to group. Returns False if they were already a member."""
        if self.is_member(user_id, group_id):
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(_memberships.insert().values(user_id=user_id, group_id=group_id, created_at=_now_iso()))
                conn.commit()
        except IntegrityError:
            # A concurrent join won the race; the membership exists either way.
            return False
        return True

    def remove_membership(self, user_id: int, group_id: int) -> bool:
        """Remove user from group. Returns False if they were not a member."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _memberships.delete().where((_memberships.c.user_id == user_id) & (_memberships.c.group_id == group_id))
            )
            conn.commit()
        return result.rowcount > 0

    def member_ids(self, group_id: int) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_memberships.c.user_id)
                .where(_memberships.c.group_id == group_id)
                .order_by(_memberships.c.user_id)
            ).fetchall()
        return [r.user_id for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_instance(row) -> Instance:
    return Instance(id=row.id, name=row.name, owner_id=row.owner_id, created_at=row.created_at)


def _row_to_group(row) -> Group:
    return Group(
        id=row.id,
        instance_id=row.instance_id,
        group_type_id=row.group_type_id,
        name=row.name,
        created_at=row.created_at,
    )
