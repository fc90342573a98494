"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the registration
routes (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures the API and web registration routes
share the same in-memory counter store. Separate instances would each keep
their own counters, and a client could double its quota by alternating.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
