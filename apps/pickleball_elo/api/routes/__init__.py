"""
API routes - combined router from all domain modules.

Shared infrastructure (the rate limiter) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter
from slowapi import Limiter
from slowapi.util import get_remote_address

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from pickleball_elo.api.routes.games import router as games_router  # noqa: E402
from pickleball_elo.api.routes.seasons import router as seasons_router  # noqa: E402
from pickleball_elo.api.routes.replay import router as replay_router  # noqa: E402

router = APIRouter()
router.include_router(games_router)
router.include_router(seasons_router)
router.include_router(replay_router)
