"""
Assignment API router - combines all assignment sub-routers.

- assign: manual override, order hooks (auto-assign, release), stats, dry run
- queue: waiting list, priority changes, removal
- waiters: availability listing and toggle, performance
- system: health, metrics, round-robin reset, forced monitoring
- hierarchy: hierarchy validation and staff tree

All routes are prefixed with /api/assignment
"""

from fastapi import APIRouter

from .assign import router as assign_router
from .queue import router as queue_router
from .waiters import router as waiters_router
from .system import router as system_router
from .hierarchy import router as hierarchy_router


router = APIRouter(prefix="/api/assignment")

router.include_router(assign_router)
router.include_router(queue_router)
router.include_router(waiters_router)
router.include_router(system_router)
router.include_router(hierarchy_router)

__all__ = ["router"]
