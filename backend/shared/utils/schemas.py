"""
Shared Pydantic schemas used across the application.

Request bodies accept camelCase (as sent by the dashboards) and snake_case.
"""

from typing import Annotated, Any, Literal

from fastapi import Path
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.config.constants import (
    AssignmentMethod,
    OrderStatus,
    QueuePriority,
    SimulationType,
)


# =============================================================================
# Common Types
# =============================================================================

# Identifiers are resolved once at the HTTP boundary
HotelId = Annotated[int, Path(gt=0, description="Hotel ID")]
BranchId = Annotated[int, Path(gt=0, description="Branch ID")]
OrderId = Annotated[int, Path(gt=0, description="Order ID")]
WaiterId = Annotated[int, Path(gt=0, description="Waiter (staff) ID")]

SelfServiceStatus = Literal["active", "inactive", "on_break", "on_leave"]
TerminalStatus = Literal["completed", "cancelled"]


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,  # Allow both field name and alias
    }


# =============================================================================
# Response Envelopes
# =============================================================================


class ApiResponse(BaseModel):
    """Standard success envelope."""

    success: bool = True
    message: str
    data: Any = None


class FieldError(BaseModel):
    """Single field-level validation problem."""

    field: str
    message: str


class ErrorResponse(CamelModel):
    """Standard error envelope."""

    success: bool = False
    message: str
    status_code: int
    errors: list[FieldError] | None = None


# =============================================================================
# Assignment Requests
# =============================================================================


class ManualAssignRequest(CamelModel):
    """Manual override: put an order on a specific waiter."""

    order_id: int = Field(gt=0)
    waiter_id: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)
    priority: QueuePriority | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Reason cannot be blank")
        return value.strip()


class AutoAssignRequest(CamelModel):
    """Payment-completion hook body."""

    method: AssignmentMethod = AssignmentMethod.ROUND_ROBIN
    require_immediate: bool = False
    priority: QueuePriority | None = None

    @field_validator("method")
    @classmethod
    def method_not_manual(cls, value: AssignmentMethod) -> AssignmentMethod:
        if value == AssignmentMethod.MANUAL:
            raise ValueError("Automatic assignment cannot use the manual method")
        return value


class ReleaseRequest(CamelModel):
    """Terminal transition notification from the order lifecycle."""

    status: TerminalStatus = OrderStatus.COMPLETED


class PriorityUpdateRequest(CamelModel):
    """Change the priority band of a queued order."""

    priority: QueuePriority
    reason: str | None = Field(default=None, max_length=500)


class AvailabilityUpdateRequest(CamelModel):
    """Waiter availability toggle (and manager-only capacity change)."""

    is_available: bool
    reason: str | None = Field(default=None, max_length=500)
    status: SelfServiceStatus | None = None
    max_orders_capacity: int | None = Field(default=None, ge=1, le=10)


class ResetRoundRobinRequest(CamelModel):
    """Reset fairness cursors for one branch or a whole hotel."""

    hotel_id: int | None = Field(default=None, gt=0)
    branch_id: int | None = Field(default=None, gt=0)


class SimulationRequest(CamelModel):
    """Dry-run of the assignment path."""

    hotel_id: int = Field(gt=0)
    branch_id: int = Field(gt=0)
    test_type: SimulationType = SimulationType.ROUND_ROBIN

