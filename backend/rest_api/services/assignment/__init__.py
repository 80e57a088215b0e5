"""
Order assignment domain services.

Usage:
    from rest_api.services.assignment import AssignmentEngine

    engine = AssignmentEngine(db, publisher)
    outcome = engine.automatic_assign(order_id)
"""

from .engine import AssignmentEngine, AssignmentOutcome
from .hierarchy import HierarchyCheck, staff_hierarchy, validate_hierarchy
from .locks import BranchLockRegistry, get_branch_locks
from .monitoring import MonitoringLoop, get_monitoring_loop, start_monitoring_loop, stop_monitoring_loop
from .policy import Candidate, load_balance_select, round_robin_select, select_waiter
from .queue import AssignmentQueue, QueuePlacement
from .registry import WaiterRegistry
from .reports import AssignmentReports

__all__ = [
    "AssignmentEngine",
    "AssignmentOutcome",
    "AssignmentQueue",
    "AssignmentReports",
    "BranchLockRegistry",
    "Candidate",
    "HierarchyCheck",
    "MonitoringLoop",
    "QueuePlacement",
    "WaiterRegistry",
    "get_branch_locks",
    "get_monitoring_loop",
    "load_balance_select",
    "round_robin_select",
    "select_waiter",
    "staff_hierarchy",
    "start_monitoring_loop",
    "stop_monitoring_loop",
    "validate_hierarchy",
]
