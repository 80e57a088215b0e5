"""
Utilities module: exceptions, schemas, response envelopes, health helpers.
"""

from shared.utils.exceptions import (
    AppException,
    NotFoundError,
    ForbiddenError,
    ValidationError,
    InvalidHierarchyError,
    CapacityExceededError,
    AlreadyAssignedError,
    NoWaitersAvailableError,
    QueueFullError,
)
from shared.utils.responses import success_response, error_body, camelize
from shared.utils.schemas import ApiResponse, ErrorResponse

__all__ = [
    # exceptions
    "AppException",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "InvalidHierarchyError",
    "CapacityExceededError",
    "AlreadyAssignedError",
    "NoWaitersAvailableError",
    "QueueFullError",
    # responses
    "success_response",
    "error_body",
    "camelize",
    # schemas
    "ApiResponse",
    "ErrorResponse",
]
