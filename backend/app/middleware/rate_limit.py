"""
Rate limiting middleware using slowapi.

Applied only to the JSON telemetry endpoints. Pixel, redirect and
unsubscribe endpoints are never limited. A limited telemetry call still gets
a 200 with an in-band reason so beacons do not retry.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.utils.request_meta import get_client_ip


def _get_client_key(request: Request) -> str:
    """Rate limit per client IP, honouring proxy headers."""
    return get_client_ip(request) or "unknown"


limiter = Limiter(
    key_func=_get_client_key,
    enabled=settings.rate_limit_enabled,
    storage_uri="memory://",  # per-worker; point at Redis to share limits across workers
)


async def _telemetry_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": False, "reason": "rate_limited"})


def setup_rate_limiting(app):
    """Configure rate limiting for the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _telemetry_rate_limit_handler)
