"""
HTTP rate limiting (SlowAPI)

- One general window ``API_RATE_LIMIT`` per client, shared by every route
  (``SlowAPIMiddleware``; decorated routes join it through ``shared_limit``)
- Stricter ``SEARCH_RATE_LIMIT`` on the title search route, on top of the general one
- Keyed on the client IP (first X-Forwarded-For hop, X-Real-IP, socket peer)
- ``RATE_LIMIT_ENABLED=false`` turns limiting off (test suite)
"""

from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request

import config
from errors import RateLimitedError, error_body

# slowapi files application_limits under this scope; shared_limit reuses it
GLOBAL_SCOPE = "global"
SEARCH_LIMIT_MESSAGE = "Too many search requests, please try again later."


def client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    xri = request.headers.get("x-real-ip")
    if xri:
        return xri.strip()
    return get_remote_address(request) or "unknown"


limiter = Limiter(
    key_func=client_ip,
    application_limits=[config.API_RATE_LIMIT],
    enabled=config.RATE_LIMIT_ENABLED,
    storage_uri="memory://",
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    message = getattr(exc.limit, "error_message", None) or RateLimitedError.default_message
    logger.warning(f"Rate limit hit by {client_ip(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=RateLimitedError.status_code, content=error_body(RateLimitedError.status_code, message))
