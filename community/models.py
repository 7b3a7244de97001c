"""
community/models.py -- Domain dataclasses for the community layer.

These are pure data containers with zero logic. Persistence lives in
community/store.py and the update rule in community/policy.py.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Instance:
    """One tenant of the platform. owner_id is the user who runs it, if any."""

    name: str
    id: int | None = None
    owner_id: int | None = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Group:
    """A group inside an instance.

    group_type_id only shapes the group's URL
    (/instances/{i}/group_types/{t}/groups/{g}); group types carry no
    behaviour of their own.
    """

    instance_id: int
    name: str
    group_type_id: int = 1
    id: int | None = None
    created_at: str = ""
