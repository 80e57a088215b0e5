"""
Centralized HTTP exceptions for consistent error handling.

Every exception logs itself on construction and is rendered by the
envelope handlers in rest_api/core/errors.py as
{"success": false, "message": ..., "statusCode": ...}.

Usage:
    from shared.utils.exceptions import NotFoundError, CapacityExceededError

    raise NotFoundError("Order", order_id)
    raise CapacityExceededError(waiter_id=3, max_capacity=5)
"""

from fastapi import HTTPException, status
from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging and response format.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        errors: list[dict[str, Any]] | None = None,
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, status_code=status_code, error=type(self).__name__, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.errors = errors


# =============================================================================
# 404 Not Found Errors
# =============================================================================


class NotFoundError(AppException):
    """
    Entity not found error (404).

    Usage:
        raise NotFoundError("Order", 123)
        raise NotFoundError("Waiter", waiter_id, branch_id=branch_id)
    """

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity} with ID {entity_id} not found"
        else:
            detail = f"{entity} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            log_level="warning",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )


class QueueEntryNotFoundError(NotFoundError):
    """Order is not waiting in the assignment queue."""

    def __init__(self, order_id: int, **log_context: Any):
        super().__init__("Queued order", order_id, **log_context)


# =============================================================================
# 403 Forbidden Errors
# =============================================================================


class ForbiddenError(AppException):
    """
    Authorization/permission error (403).

    Usage:
        raise ForbiddenError("update another waiter's availability")
    """

    def __init__(self, action: str | None = None, **log_context: Any):
        if action:
            detail = f"Not authorized to {action}"
        else:
            detail = "Access denied"

        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            log_level="warning",
            action=action,
            **log_context,
        )


class InsufficientRoleError(ForbiddenError):
    """User doesn't have the required role."""

    def __init__(self, required_roles: list[str], **log_context: Any):
        roles_str = ", ".join(required_roles)
        super().__init__(
            f"perform this action (requires role: {roles_str})",
            required_roles=required_roles,
            **log_context,
        )


# =============================================================================
# 400 Bad Request Errors
# =============================================================================


class ValidationError(AppException):
    """
    Input validation error (400).

    Usage:
        raise ValidationError("Capacity must be between 1 and 10")
        raise ValidationError("Invalid date range", field="startDate")
    """

    def __init__(self, detail: str, errors: list[dict[str, Any]] | None = None, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            log_level="warning",
            errors=errors,
            **log_context,
        )


class InvalidHierarchyError(ValidationError):
    """The hotel -> branch -> staff chain is inconsistent."""

    def __init__(self, reason: str, **log_context: Any):
        super().__init__(
            f"Invalid organizational hierarchy: {reason}",
            errors=[{"field": "hierarchy", "message": reason}],
            reason=reason,
            **log_context,
        )
        self.reason = reason


class CapacityExceededError(ValidationError):
    """Target waiter has no free slot."""

    def __init__(self, waiter_id: int, max_capacity: int, **log_context: Any):
        super().__init__(
            f"Waiter is at maximum capacity ({max_capacity} orders)",
            waiter_id=waiter_id,
            max_capacity=max_capacity,
            **log_context,
        )
        self.waiter_id = waiter_id
        self.max_capacity = max_capacity


class AlreadyAssignedError(ValidationError):
    """Order already has a waiter."""

    def __init__(self, order_id: int, waiter_id: int | None = None, **log_context: Any):
        if waiter_id is not None:
            detail = f"Order {order_id} is already assigned to waiter {waiter_id}"
        else:
            detail = f"Order {order_id} is already assigned"
        super().__init__(detail, order_id=order_id, waiter_id=waiter_id, **log_context)


class InvalidStateError(ValidationError):
    """Entity is in an invalid state for the operation."""

    def __init__(self, entity: str, current_state: str, expected_states: list[str] | None = None, **log_context: Any):
        if expected_states:
            states_str = ", ".join(expected_states)
            detail = f"{entity} is in state '{current_state}', expected one of: {states_str}"
        else:
            detail = f"{entity} cannot be in state '{current_state}' for this operation"

        super().__init__(detail, entity=entity, current_state=current_state, **log_context)


# =============================================================================
# 500 / 503 Errors
# =============================================================================


class InternalError(AppException):
    """
    Internal server error (500).

    Usage:
        raise InternalError("Failed to persist assignment", order_id=123)
    """

    def __init__(self, detail: str = "Internal server error", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            log_level="error",
            **log_context,
        )


class ServiceUnavailableError(AppException):
    """Temporary condition (503) the caller may retry after a delay."""

    def __init__(self, detail: str, retry_after: int | None = None, **log_context: Any):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            log_level="warning",
            headers=headers,
            **log_context,
        )


class NoWaitersAvailableError(ServiceUnavailableError):
    """Immediate assignment demanded but no waiter is eligible."""

    def __init__(self, branch_id: int, retry_after: int | None = None, **log_context: Any):
        super().__init__(
            "No waiters available for assignment",
            retry_after=retry_after,
            branch_id=branch_id,
            **log_context,
        )


class QueueFullError(ServiceUnavailableError):
    """Branch queue reached its configured ceiling."""

    def __init__(self, branch_id: int, max_size: int, retry_after: int | None = None, **log_context: Any):
        super().__init__(
            "Queue is full. Please try again later.",
            retry_after=retry_after,
            branch_id=branch_id,
            max_size=max_size,
            **log_context,
        )
