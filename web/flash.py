"""
web/flash.py -- One-shot messages carried across a redirect in the session.

Messages are stored under the "_flash" session slot as [category, message]
pairs and removed by the first page render that pops them. The list is always
replaced, never mutated in place, so the session notices the change.
"""

from __future__ import annotations

from starlette.requests import Request

_FLASH_KEY = "_flash"


def flash(request: Request, category: str, message: str) -> None:
    """Queue a message ("error" or "notice") for the next rendered page."""
    session = request.state.session
    session[_FLASH_KEY] = [*session.get(_FLASH_KEY, []), [category, message]]


def pop_flashes(request: Request) -> list[tuple[str, str]]:
    """Remove and return all queued messages, oldest first."""
    return [(category, message) for category, message in request.state.session.pop(_FLASH_KEY, [])]
