"""
Shared module for common utilities used by the REST API and the CLI.

CLEAN ARCHITECTURE STRUCTURE:
- shared.security: Authentication, authorization, rate limiting
  - auth.py: JWT verification, current_user_context, require_roles
  - rate_limit.py: slowapi limiter and 429 envelope

- shared.infrastructure: Database and messaging
  - db.py: SQLAlchemy sessions, safe_commit()
  - events/: Redis pub/sub publisher, circuit breaker, event schema
  - correlation.py: X-Request-ID middleware

- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging
  - constants.py: Roles, OrderStatus, AssignmentMethod, QueuePriority

- shared.utils: Utilities
  - exceptions.py: HTTP exceptions with auto-logging
  - schemas.py: Request models and response envelopes
  - responses.py: success_response(), error_body()
  - dates.py: UTC helpers
  - health.py: Health check aggregation

IMPORT EXAMPLES:
    from shared.security.auth import verify_jwt, current_user_context
    from shared.infrastructure.db import get_db, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import Roles, OrderStatus
    from shared.utils.exceptions import NotFoundError, ForbiddenError
"""

# This module no longer provides backward-compatible re-exports.
# All imports should use the canonical paths as documented above.
