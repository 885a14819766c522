"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and by the route modules
that apply per-route limits with @limiter.limit().

One shared instance means every route counts against the same in-memory
store. Separate instances per module would each keep their own counters.

Limited routes:
  POST /analytics/query  -- each call builds a throwaway SQLite database
  POST /incidents, POST /drafts -- every write rewrites the full snapshot
  POST /reset            -- discards all state
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
