"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from kingofcourt.services.errors import CompetitionError

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
# Shared error translation
# ---------------------------------------------------------------------------
def to_http_exception(error: CompetitionError) -> HTTPException:
    """Translate a service error into the HTTP error callers see."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from kingofcourt.api.routes.health import router as health_router  # noqa: E402
from kingofcourt.api.routes.invitations import router as invitations_router  # noqa: E402
from kingofcourt.api.routes.matches import router as matches_router  # noqa: E402
from kingofcourt.api.routes.rankings import router as rankings_router  # noqa: E402
from kingofcourt.api.routes.venues import router as venues_router  # noqa: E402

router = APIRouter()
router.include_router(health_router)
router.include_router(invitations_router)
router.include_router(matches_router)
router.include_router(rankings_router)
router.include_router(venues_router)
