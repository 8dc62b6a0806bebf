"""
api/limiter.py -- Shared slowapi rate limiter and the per-route limit strings.

api/main.py mounts the limiter as middleware; the route modules under
api/routes/v1/ decorate their handlers with @limiter.limit(<one of below>).

One shared instance means one in-memory counter store. A limiter created per
route module would count each module separately.

Assessments run the whole pipeline and write history, so they get the
tightest budget. Snapshot deltas load two snapshots per call.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

ASSESSMENT_LIMIT = "10/minute"
DELTA_LIMIT = "30/minute"
READ_LIMIT = "60/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
