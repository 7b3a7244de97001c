"""
auth/exceptions.py -- Exceptions raised by the auth and community layers.

NotFoundError is the only exception the request cycle lets escape; the app
turns it into a 404 (see api/main.py). Unauthenticated and unauthorized
requests are never exceptions -- they become redirects with a flash message.
"""


class NotFoundError(LookupError):
    """A referenced record does not exist."""


class IdentityNotFoundError(NotFoundError):
    """The session references a user or admin that no longer exists."""

    def __init__(self, kind: str, identity_id: object) -> None:
        super().__init__(f"No {kind} with id {identity_id!r}")
        self.kind = kind
        self.identity_id = identity_id


class RecordNotFoundError(NotFoundError):
    """An instance, user or group referenced by a request does not exist."""
