"""
community/policy.py -- Who may change a member's own records.

A member may change their own memberships. The owner of an instance may change
anyone's within that instance.
"""

from __future__ import annotations

from auth.models import User
from community.models import Instance


def updatable_by(user: User, actor: User | None, instance: Instance) -> bool:
    """Return True if actor may update user's records inside instance."""
    if actor is None or actor.id is None:
        return False
    if actor.instance_id != instance.id or user.instance_id != instance.id:
        return False
    return actor.id == user.id or actor.id == instance.owner_id
