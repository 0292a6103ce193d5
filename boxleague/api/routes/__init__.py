"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import logging
import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from boxleague.services.exceptions import (
    AbsenceNotFoundError,
    BoxSizeValidationError,
    LeagueNotFoundError,
    MatchNotFoundError,
    MemberNotFoundError,
    SeasonNotFoundError,
    WeekConflictError,
    WeekNotFoundError,
)

logger = logging.getLogger(__name__)

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
# Service error -> HTTP status
# ---------------------------------------------------------------------------
NOT_FOUND_ERRORS = (
    LeagueNotFoundError,
    SeasonNotFoundError,
    WeekNotFoundError,
    MemberNotFoundError,
    AbsenceNotFoundError,
    MatchNotFoundError,
)


def service_error(e: Exception, action: str) -> HTTPException:
    """Translate an exception raised by a service into an HTTPException."""
    if isinstance(e, NOT_FOUND_ERRORS):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, WeekConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, BoxSizeValidationError):
        return HTTPException(
            status_code=400,
            detail={"message": str(e), "violations": [v.to_dict() for v in e.violations]},
        )
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}: {str(e)}")


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from boxleague.api.routes.leagues import router as leagues_router  # noqa: E402
from boxleague.api.routes.seasons import router as seasons_router  # noqa: E402
from boxleague.api.routes.weeks import router as weeks_router  # noqa: E402

router = APIRouter()
router.include_router(leagues_router)
router.include_router(seasons_router)
router.include_router(weeks_router)
