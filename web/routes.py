"""
web/routes.py -- Jinja2 template routes for the Commons web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same UserStore, CommunityStore and SessionStore).

Templates never reach for the auth state on their own: every render passes
the request's AuthContext explicitly as `auth`, next to the popped flashes.

Routes:
  GET  /instances/{instance_id}                                         -- instance page
  GET  /instances/{instance_id}/login                                   -- member login form
  POST /instances/{instance_id}/login                                   -- member login
  POST /instances/{instance_id}/logout                                  -- member logout (kills session)
  GET  /instances/{instance_id}/group_types/{group_type_id}/groups/{id} -- group page (login required)
  POST /instances/{instance_id}/memberships                             -- join or leave a group
  GET  /login                                                           -- admin login form
  POST /login                                                           -- admin login
  POST /logout                                                          -- admin logout (kills session)
  GET  /admin                                                           -- admin landing page (admin required)
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.context import AuthContext
from auth.exceptions import RecordNotFoundError
from auth.models import IdentityKind, User
from auth.store import UserStore
from auth.tokens import authenticate_admin, authenticate_user
from community.models import Group, Instance
from community.policy import updatable_by
from community.store import CommunityStore
from core.config import get_settings
from core.limiter import limiter
from web.flash import flash, pop_flashes
from web.guards import (
    instance_login_path,
    instance_path,
    notice_exit,
    require_admin_login,
    require_login,
    with_rejection,
)

logger = logging.getLogger("commons.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_LOGIN_RATE = get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str], default: str) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    /login?return_to=https://attacker.com and //attacker.com both fall back
    to default.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return default


def _render(request: Request, name: str, context: dict, status_code: int = 200) -> HTMLResponse:
    auth = AuthContext.from_request(request)
    context = {**context, "auth": auth, "flashes": pop_flashes(request)}
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def group_path(instance: Instance, group: Group) -> str:
    return f"/instances/{instance.id}/group_types/{group.group_type_id}/groups/{group.id}"


def _find_member(request: Request, instance: Instance, user_id: int) -> User:
    """Return the user if they belong to instance, else raise RecordNotFoundError."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None or user.instance_id != instance.id:
        raise RecordNotFoundError(f"No user with id {user_id!r} in instance {instance.id!r}")
    return user


# ---------------------------------------------------------------------------
# Instance pages and member login
# ---------------------------------------------------------------------------


@router.get("/instances/{instance_id}/login", response_class=HTMLResponse)
def login_form(request: Request, instance_id: int, return_to: Optional[str] = None) -> HTMLResponse:
    """Render the member login form, or skip it for an already logged-in member."""
    community: CommunityStore = request.app.state.community
    instance = community.find_instance(instance_id)
    auth = AuthContext.from_request(request)
    if auth.is_logged_in(IdentityKind.USER) and auth.current_user.instance_id == instance.id:
        return RedirectResponse(_safe_next(return_to, instance_path(instance.id)), status_code=302)
    return _render(
        request,
        "login.html",
        {
            "title": f"Log in to {instance.name}",
            "action": instance_login_path(instance.id, return_to),
            "allow_remember": True,
        },
    )


@limiter.limit(_LOGIN_RATE)
@router.post("/instances/{instance_id}/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    instance_id: int,
    login: str = Form(...),
    password: str = Form(...),
    remember_me: bool = Form(False),
    return_to: Optional[str] = None,
) -> RedirectResponse:
    """Handle member login.

    Any identity already on this browser is logged out first (keeping the
    session). On success the remember cookie is issued when remember_me is
    ticked and cleared otherwise.
    """
    community: CommunityStore = request.app.state.community
    user_store: UserStore = request.app.state.user_store
    instance = community.find_instance(instance_id)
    auth = AuthContext.from_request(request)

    auth.resolve_discarding_stale()
    auth.logout_keeping_session()
    user = authenticate_user(user_store, instance.id, login, password)
    if user is None:
        logger.warning("Failed login for %r on instance %s", login, instance.id)
        flash(request, "error", "Couldn't log you in as '%s'." % login)
        return RedirectResponse(instance_login_path(instance.id, return_to), status_code=302)

    auth.login_as(user)
    auth.handle_remember_cookie(remember_me)
    logger.info("User %s logged in to instance %s (remember_me=%s)", user.id, instance.id, remember_me)
    resp = notice_exit(request, _safe_next(return_to, instance_path(instance.id)), "Logged in successfully.")
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/instances/{instance_id}/logout")
def logout(request: Request, instance_id: int) -> RedirectResponse:
    """Log the member out and destroy the session."""
    community: CommunityStore = request.app.state.community
    instance = community.find_instance(instance_id)
    auth = AuthContext.from_request(request)
    auth.resolve_discarding_stale()
    auth.logout_killing_session()
    return notice_exit(request, instance_path(instance.id), "You have been logged out.")


@router.get("/instances/{instance_id}", response_class=HTMLResponse)
def instance_show(request: Request, instance_id: int) -> HTMLResponse:
    """Public instance page listing its groups."""
    community: CommunityStore = request.app.state.community
    instance = community.find_instance(instance_id)
    AuthContext.from_request(request).resolve()
    groups = community.list_groups(instance.id)
    return _render(
        request,
        "instance.html",
        {
            "instance": instance,
            "groups": [(group, group_path(instance, group)) for group in groups],
        },
    )


@router.get("/instances/{instance_id}/group_types/{group_type_id}/groups/{group_id}", response_class=HTMLResponse)
def group_show(request: Request, instance_id: int, group_type_id: int, group_id: int) -> HTMLResponse:
    """Group page with a join/leave button for the logged-in member."""
    if redirect := require_login(request, instance_id):
        return redirect
    community: CommunityStore = request.app.state.community
    user_store: UserStore = request.app.state.user_store
    instance = community.find_instance(instance_id)
    group = community.find_group(instance.id, group_id)
    if group.group_type_id != group_type_id:
        raise RecordNotFoundError(f"Group {group_id!r} is not of group type {group_type_id!r}")
    current = AuthContext.from_request(request).current_user
    members = [u for u in (user_store.get_by_id(uid) for uid in community.member_ids(group.id)) if u is not None]
    return _render(
        request,
        "group.html",
        {
            "instance": instance,
            "group": group,
            "members": members,
            "is_member": community.is_member(current.id, group.id),
        },
    )


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


@router.post("/instances/{instance_id}/memberships")
async def membership_create(
    request: Request,
    instance_id: int,
    user_id: int = Form(...),
    group_id: int = Form(...),
) -> RedirectResponse:
    """Join or leave a group on behalf of user_id.

    Any `leave` field in the form means leave, whatever its value (even
    empty). Allowed for the user themself and for the instance owner; anyone
    else is sent back with an error.
    """
    leave = "leave" in await request.form()
    community: CommunityStore = request.app.state.community
    instance = community.find_instance(instance_id)
    user = _find_member(request, instance, user_id)
    group = community.find_group(instance.id, group_id)

    auth = AuthContext.from_request(request)
    auth.is_logged_in(IdentityKind.USER)
    if not updatable_by(user, auth.current_user, instance):
        return with_rejection(request, instance)

    if leave:
        community.remove_membership(user.id, group.id)
        logger.info("User %s left group %s", user.id, group.id)
        return notice_exit(request, group_path(instance, group), "You have left this group.")

    community.add_membership(user.id, group.id)
    logger.info("User %s joined group %s", user.id, group.id)
    return notice_exit(request, group_path(instance, group), "You have joined this group.")


# ---------------------------------------------------------------------------
# Admin login
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def admin_login_form(request: Request) -> HTMLResponse:
    if AuthContext.from_request(request).is_logged_in(IdentityKind.ADMIN):
        return RedirectResponse("/admin", status_code=302)
    return _render(
        request,
        "login.html",
        {"title": "Administrator login", "action": "/login", "allow_remember": False},
    )


@limiter.limit(_LOGIN_RATE)
@router.post("/login", response_class=HTMLResponse)
def admin_login_post(
    request: Request,
    login: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle administrator login. Admins never get a remember cookie."""
    user_store: UserStore = request.app.state.user_store
    admin = authenticate_admin(user_store, login, password)
    if admin is None:
        logger.warning("Failed admin login for %r", login)
        flash(request, "error", "Couldn't log you in as '%s'." % login)
        return RedirectResponse("/login", status_code=302)

    AuthContext.from_request(request).login_as(admin, IdentityKind.ADMIN)
    logger.info("Admin %s logged in", admin.id)
    resp = notice_exit(request, "/admin", "Logged in successfully.")
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def admin_logout(request: Request) -> RedirectResponse:
    """Log out every identity on this browser and destroy the session."""
    auth = AuthContext.from_request(request)
    auth.resolve_discarding_stale()
    auth.logout_killing_session()
    return notice_exit(request, "/login", "You have been logged out.")


@router.get("/admin", response_class=HTMLResponse)
def admin_home(request: Request) -> HTMLResponse:
    if redirect := require_admin_login(request):
        return redirect
    return _render(request, "admin.html", {})
