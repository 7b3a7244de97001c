"""
web/guards.py -- Redirect helpers for unauthenticated and unauthorized requests.

Failures here are never exceptions: the browser gets a 302 and a flash
message explaining why. Call guards at the top of a handler:

    if redirect := require_login(request, instance_id):
        return redirect
    ...
    if not updatable_by(user, auth.current_user, instance):
        return with_rejection(request, instance)
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote, urlsplit

from fastapi.responses import RedirectResponse
from starlette.requests import Request

from auth.context import AuthContext
from auth.models import IdentityKind
from community.models import Instance
from community.store import CommunityStore
from web.flash import flash

logger = logging.getLogger("commons.web")

NOT_AUTHORIZED = "You are not authorized to view that page."
LOGIN_REQUIRED = "You must be logged in to view this page."


def instance_path(instance_id: int) -> str:
    return f"/instances/{instance_id}"


def instance_login_path(instance_id: int, return_to: Optional[str] = None) -> str:
    path = f"/instances/{instance_id}/login"
    if return_to:
        path += f"?return_to={quote(return_to, safe='/')}"
    return path


def error_exit(request: Request, url: str, error: str = NOT_AUTHORIZED) -> RedirectResponse:
    """Flash an error and redirect to url."""
    flash(request, "error", error)
    return RedirectResponse(url, status_code=302)


def notice_exit(request: Request, url: str, notice: str) -> RedirectResponse:
    """Flash a notice and redirect to url."""
    flash(request, "notice", notice)
    return RedirectResponse(url, status_code=302)


def _same_site_referer(request: Request) -> Optional[str]:
    """Return the Referer as a local path, or None if absent or off-site.

    Redirecting to an arbitrary Referer would be an open redirect, so only a
    referer on this request's own host is honoured.
    """
    referer = request.headers.get("referer")
    if not referer:
        return None
    parts = urlsplit(referer)
    if parts.netloc and parts.netloc != request.url.netloc:
        return None
    path = parts.path or "/"
    if not path.startswith("/") or path.startswith("//"):
        return None
    return f"{path}?{parts.query}" if parts.query else path


def with_rejection(
    request: Request,
    instance: Instance,
    error: Optional[str] = None,
    fail_to: Optional[str] = None,
) -> RedirectResponse:
    """Reject the request: flash error and go back where the user came from.

    fail_to defaults to the referring page, or the instance page when there
    is no usable referer.
    """
    error = error or NOT_AUTHORIZED
    if fail_to is None:
        fail_to = _same_site_referer(request) or instance_path(instance.id)
    logger.info("Rejected %s %s", request.method, request.url.path)
    return error_exit(request, fail_to, error)


def require_login(request: Request, instance_id: int) -> Optional[RedirectResponse]:
    """Redirect to the instance login page unless a user is logged in.

    The instance is looked up first, so an unknown instance id is a 404
    whether or not anybody is logged in.
    """
    community: CommunityStore = request.app.state.community
    instance = community.find_instance(instance_id)
    return_to = request.url.path + (f"?{request.url.query}" if request.url.query else "")
    path = instance_login_path(instance.id, return_to)
    if AuthContext.from_request(request).is_logged_in(IdentityKind.USER):
        return None
    return notice_exit(request, path, LOGIN_REQUIRED)


def require_admin_login(request: Request) -> Optional[RedirectResponse]:
    """Redirect to the admin login page unless an admin is logged in."""
    if AuthContext.from_request(request).is_logged_in(IdentityKind.ADMIN):
        return None
    return notice_exit(request, "/login", LOGIN_REQUIRED)
