"""
core/limiter.py -- Shared slowapi rate limiter instance.

Lives in core/ because both api/ (JSON login) and web/ (form login) apply
per-route limits with @limiter.limit(), and neither layer may import the
other. api/main.py mounts it as middleware.

A single shared instance means every route shares one in-memory counter
store; separate instances would each count in isolation and never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
