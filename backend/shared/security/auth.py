"""
Authentication and authorization utilities.

Tokens are issued by the platform's auth service; this service only verifies
them. Staff tokens carry: sub (staff id), roles, hotel_ids, branch_ids.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

import jwt
from fastapi import Header, HTTPException, status

from shared.config.constants import Roles
from shared.config.settings import (
    JWT_SECRET,
    JWT_ISSUER,
    JWT_AUDIENCE,
    settings,
)
from shared.config.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# JWT Functions
# =============================================================================


def sign_jwt(
    payload: dict[str, Any],
    ttl_seconds: int | None = None,
    token_type: str = "access",
) -> str:
    """
    Sign a JWT token with the given payload.

    Used by tests and by internal callers (the order service) that need a
    service token.

    Args:
        payload: Claims to include (sub, roles, hotel_ids, branch_ids, ...).
        ttl_seconds: Token lifetime in seconds. Defaults to access token expiry.
        token_type: Type of token.

    Returns:
        Signed JWT token string.
    """
    if ttl_seconds is None:
        ttl_seconds = settings.jwt_access_token_expire_minutes * 60

    now = int(time.time())
    data = {
        **payload,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "exp": now + ttl_seconds,
        "type": token_type,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(data, JWT_SECRET, algorithm="HS256")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Returns:
        Decoded claims with `sub` normalized to int and `roles`,
        `hotel_ids`, `branch_ids` defaulted to empty lists.

    Raises:
        HTTPException(401): If token is invalid, expired, or malformed.
    """
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=["HS256"],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        # Log the real reason, return a generic message
        logger.warning("JWT validation failed", error=str(e))
        raise _unauthorized("Invalid token")

    if "sub" not in payload:
        raise _unauthorized("Invalid token: missing subject claim")

    if payload.get("type") not in ("access", None):
        raise _unauthorized("Invalid token: invalid type claim")

    try:
        payload["sub"] = int(payload["sub"])
    except (ValueError, TypeError):
        raise _unauthorized("Invalid token: malformed subject claim")

    roles = payload.get("roles") or []
    if not isinstance(roles, list) or any(r not in Roles.ALL for r in roles):
        raise _unauthorized("Invalid token: malformed roles claim")

    payload["roles"] = roles
    payload["hotel_ids"] = payload.get("hotel_ids") or []
    payload["branch_ids"] = payload.get("branch_ids") or []
    return payload


def get_bearer_token(authorization: str | None) -> str:
    """
    Extract bearer token from Authorization header.

    Raises:
        HTTPException(401): If header is missing or malformed.
    """
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    if not authorization.startswith("Bearer "):
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")
    return authorization.split(" ", 1)[1].strip()


def current_user_context(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """
    FastAPI dependency to get the current user context from JWT.

    Usage:
        @router.get("/stats")
        def stats(ctx: dict = Depends(current_user_context)):
            staff_id = ctx["sub"]
    """
    token = get_bearer_token(authorization)
    return verify_jwt(token)


def has_any_role(ctx: dict[str, Any], allowed: list[str] | frozenset[str]) -> bool:
    return bool(set(ctx.get("roles", [])) & set(allowed))


def require_roles(ctx: dict[str, Any], allowed: list[str] | frozenset[str]) -> None:
    """
    Verify that the user has at least one of the allowed roles.

    Raises:
        InsufficientRoleError (403): If user lacks required role.
    """
    from shared.utils.exceptions import InsufficientRoleError

    if not has_any_role(ctx, allowed):
        raise InsufficientRoleError(sorted(allowed), user_id=ctx.get("sub"))


def can_access_branch(ctx: dict[str, Any], hotel_id: int | None, branch_id: int | None) -> bool:
    """
    SUPER_ADMIN sees everything; ADMIN sees its hotels; everyone else
    sees the branches listed in the token.
    """
    roles = set(ctx.get("roles", []))
    if Roles.SUPER_ADMIN in roles:
        return True
    if Roles.ADMIN in roles and hotel_id is not None and hotel_id in ctx.get("hotel_ids", []):
        return True
    if branch_id is not None and branch_id in ctx.get("branch_ids", []):
        return True
    # Hotel-wide scope without a branch is only for hotel admins
    return False


def require_branch_access(ctx: dict[str, Any], hotel_id: int | None, branch_id: int | None) -> None:
    """Raise ForbiddenError (403) if the caller cannot see the hotel/branch."""
    from shared.utils.exceptions import ForbiddenError

    if not can_access_branch(ctx, hotel_id, branch_id):
        raise ForbiddenError(
            "access this branch",
            user_id=ctx.get("sub"),
            hotel_id=hotel_id,
            branch_id=branch_id,
        )
