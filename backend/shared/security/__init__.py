"""
Security module: JWT verification and role checks.
"""

from shared.security.auth import (
    sign_jwt,
    verify_jwt,
    get_bearer_token,
    current_user_context,
    has_any_role,
    require_roles,
    can_access_branch,
    require_branch_access,
)
from shared.security.rate_limit import limiter, rate_limit_exceeded_handler

__all__ = [
    "sign_jwt",
    "verify_jwt",
    "get_bearer_token",
    "current_user_context",
    "has_any_role",
    "require_roles",
    "can_access_branch",
    "require_branch_access",
    "limiter",
    "rate_limit_exceeded_handler",
]
