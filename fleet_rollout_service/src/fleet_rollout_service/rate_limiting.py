import sys
import uuid

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from fleet_rollout_service.config import settings

from .logging_config import logger

# Determine if we're in test mode by checking if pytest is running
IS_TEST_MODE = "pytest" in sys.modules


def get_limiter_key(request: Request):
    if IS_TEST_MODE:
        # In test mode, give each request a unique key to effectively disable rate limiting
        return str(uuid.uuid4())
    # In normal mode, use the client IP
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_limiter_key,
    default_limits=[settings.GENERAL_RATE_LIMIT],
    strategy="fixed-window",
)

# Specific rate limits for mutating rollout endpoints
ROLLOUT_CREATE_LIMIT = settings.ROLLOUT_CREATE_RATE_LIMIT
ROLLOUT_ACTION_LIMIT = settings.ROLLOUT_ACTION_RATE_LIMIT


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Custom handler for rate limit exceeded exceptions"""
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded", "limit": str(exc.detail)},
    )


def setup_rate_limiting(app):
    """Configure rate limiting for the FastAPI application"""
    app.state.limiter = limiter

    if IS_TEST_MODE:
        limiter.enabled = False
        logger.info("Rate limiting is disabled in test mode")
    else:
        logger.info(
            f"Rate limiting is enabled with the following limits: "
            f"General={settings.GENERAL_RATE_LIMIT}, "
            f"RolloutCreate={ROLLOUT_CREATE_LIMIT}, "
            f"RolloutAction={ROLLOUT_ACTION_LIMIT}"
        )

    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
