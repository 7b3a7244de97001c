"""
tests/conftest.py -- Shared test fixtures for Commons.

This module provides:
  - user_store / community / session_store: isolated in-memory stores
  - seeded: an instance with an owner, a member, an outsider, a group and an admin
  - web_client: TestClient over the full ASGI app, follow_redirects=False
  - make_auth: builds an AuthContext over a fresh Session for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
client fixtures because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Each test gets its own names, so no state leaks between
tests.

The DEBUG env var must be set before any commons import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Set DEBUG before any auth/core import so get_settings() can auto-generate
# SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.context import AuthContext
from auth.models import Admin, User
from auth.sessions import Session, SessionStore
from auth.store import UserStore
from auth.tokens import hash_password
from community.models import Group, Instance
from community.store import CommunityStore
from core.limiter import limiter

# Login endpoints are rate limited per IP; every TestClient request comes from
# the same address.
limiter.enabled = False

PASSWORD = "correct horse battery"


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=_memory_url("users"))
    yield store
    store.close()


@pytest.fixture
def community() -> Generator[CommunityStore, None, None]:
    store = CommunityStore(db_url=_memory_url("community"))
    yield store
    store.close()


@pytest.fixture
def session_store() -> Generator[SessionStore, None, None]:
    store = SessionStore(db_url=_memory_url("sessions"))
    yield store
    store.close()


@dataclass
class Seed:
    instance: Instance
    owner: User
    member: User
    outsider: User
    group: Group
    admin: Admin


@pytest.fixture
def seeded(user_store: UserStore, community: CommunityStore) -> Seed:
    """One instance owned by 'olive', a plain member 'mia', a member 'otto' of
    another instance, one group and one administrator. All share PASSWORD."""
    hashed = hash_password(PASSWORD)
    iid = community.create_instance(Instance(name="Wesleyan"))
    other_iid = community.create_instance(Instance(name="Trinity"))

    owner_id = user_store.create_user(User(instance_id=iid, login="olive", hashed_password=hashed))
    member_id = user_store.create_user(User(instance_id=iid, login="mia", hashed_password=hashed))
    outsider_id = user_store.create_user(User(instance_id=other_iid, login="otto", hashed_password=hashed))
    community.set_owner(iid, owner_id)

    gid = community.create_group(Group(instance_id=iid, name="Chess club", group_type_id=2))
    admin_id = user_store.create_admin(Admin(login="root", hashed_password=hashed))

    return Seed(
        instance=community.get_instance(iid),
        owner=user_store.get_by_id(owner_id),
        member=user_store.get_by_id(member_id),
        outsider=user_store.get_by_id(outsider_id),
        group=community.find_group(iid, gid),
        admin=user_store.get_admin_by_id(admin_id),
    )


# ---------------------------------------------------------------------------
# Unit-test helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_auth(user_store: UserStore):
    """Return a factory: make_auth(session_data=None, cookies=None) -> AuthContext."""

    def _make(session_data: dict | None = None, cookies: dict | None = None) -> AuthContext:
        return AuthContext(Session("sid-1", session_data), cookies or {}, user_store)

    return _make


# ---------------------------------------------------------------------------
# ASGI client
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, community: CommunityStore, session_store: SessionStore):
    """Return a lifespan that wires the test stores into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.community = community
        app.state.session_store = session_store
        yield

    return test_lifespan


@pytest.fixture
def web_client(
    seeded: Seed,
    user_store: UserStore,
    community: CommunityStore,
    session_store: SessionStore,
) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the full app with follow_redirects=False.

    Redirect tests assert on Location headers, which are invisible once the
    client follows the redirect.
    """
    app.router.lifespan_context = _patch_lifespan(user_store, community, session_store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def password() -> str:
    """The password every seeded user and admin shares."""
    return PASSWORD


@pytest.fixture
def log_in(web_client: TestClient):
    """Return log_in(user, remember_me=False): posts the member login form."""

    def _log_in(user: User, remember_me: bool = False):
        data = {"login": user.login, "password": PASSWORD}
        if remember_me:
            data["remember_me"] = "1"
        return web_client.post(f"/instances/{user.instance_id}/login", data=data)

    return _log_in
