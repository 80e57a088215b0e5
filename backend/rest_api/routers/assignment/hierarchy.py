"""
Hierarchy endpoints: structural validation and the staff tree.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rest_api.routers.assignment._base import require_management
from rest_api.services.assignment import staff_hierarchy, validate_hierarchy
from shared.infrastructure.db import get_db
from shared.security.auth import can_access_branch
from shared.utils.exceptions import ForbiddenError
from shared.utils.responses import success_response
from shared.utils.schemas import HotelId


router = APIRouter(tags=["assignment-hierarchy"])


def _check_access(user: dict, hotel_id: int, branch_id: int | None) -> None:
    # Reports a broken chain instead of hiding it, so only the token scope is checked
    if not can_access_branch(user, hotel_id, branch_id):
        raise ForbiddenError("access this hierarchy", user_id=user.get("sub"), hotel_id=hotel_id)


@router.get("/validate-hierarchy/{hotel_id}")
@router.get("/validate-hierarchy/{hotel_id}/{branch_id}")
def get_hierarchy_validation(
    hotel_id: HotelId,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_management),
) -> dict:
    _check_access(user, hotel_id, branch_id)
    check = validate_hierarchy(db, hotel_id, branch_id)
    return success_response(
        {"hotel_id": hotel_id, "branch_id": branch_id, "validation": check.to_dict()},
        "Hierarchy validation completed",
    )


@router.get("/staff-hierarchy/{hotel_id}")
@router.get("/staff-hierarchy/{hotel_id}/{branch_id}")
def get_staff_hierarchy(
    hotel_id: HotelId,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_management),
) -> dict:
    _check_access(user, hotel_id, branch_id)
    return success_response(
        staff_hierarchy(db, hotel_id, branch_id),
        "Staff hierarchy retrieved",
    )
