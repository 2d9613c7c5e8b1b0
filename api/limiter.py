"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware) and
api/routes/users.py applies it to the credential endpoints (signup, signin,
google-signin) with @limiter.limit(). Counters are keyed on the client IP and
live in process memory, so they reset on restart and are per-worker.

Tests call limiter.reset() between cases so one test's signins do not count
against the next.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
