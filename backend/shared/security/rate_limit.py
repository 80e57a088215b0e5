"""
Rate limiting utilities using slowapi.

Applied to the expensive or override-style assignment endpoints
(manual assignment, forced monitoring cycles).
"""

import jwt
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from shared.config.settings import settings
from shared.utils.responses import error_body


def get_rate_limit_key(request: Request) -> str:
    """
    Authenticated callers are limited per token subject, anonymous ones per IP.

    The subject is read without verification; verification happens in the
    route dependency, this only picks a bucket.
    """
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        try:
            claims = jwt.decode(authorization[7:], options={"verify_signature": False})
            if claims.get("sub") is not None:
                return f"staff:{claims['sub']}"
        except jwt.InvalidTokenError:
            pass
    return get_remote_address(request)


# Create limiter instance keyed by staff id (or client IP)
limiter = Limiter(key_func=get_rate_limit_key, enabled=settings.rate_limit_enabled)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render rate limit errors in the standard error envelope."""
    return JSONResponse(
        status_code=429,
        content=error_body("Rate limit exceeded. Please try again later.", 429),
        headers={"Retry-After": "60"},
    )
