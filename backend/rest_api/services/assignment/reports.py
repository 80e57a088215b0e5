"""
Read-only reports: waiter performance, system metrics, system health.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from rest_api.models import Branch, Hotel, Order, OrderAssignmentHistory, Staff
from shared.config.constants import HistoryAction, OrderStatus, Roles
from shared.config.logging import assignment_logger as logger
from shared.config.settings import settings
from shared.utils.dates import as_utc, minutes_between, utc_now
from shared.utils.exceptions import ValidationError
from shared.utils.health import status_from_warnings

from .queue import AssignmentQueue
from .registry import WaiterRegistry


def _check_period(start: datetime, end: datetime) -> None:
    if start > end:
        raise ValidationError(
            "Start date must be before end date",
            errors=[{"field": "startDate", "message": "must be before endDate"}],
        )


def _avg(values: list[float], digits: int = 1) -> float | None:
    return round(sum(values) / len(values), digits) if values else None


class AssignmentReports:

    def __init__(self, db: Session):
        self._db = db
        self._registry = WaiterRegistry(db)
        self._queue = AssignmentQueue(db)

    def waiter_performance(self, waiter_id: int, start: datetime, end: datetime) -> dict[str, Any]:
        """
        Orders the waiter was assigned inside [start, end]: completion,
        revenue, service time, rating and a per-day breakdown.
        """
        _check_period(start, end)
        waiter = self._registry.get_waiter(waiter_id)

        orders = self._db.scalars(
            select(Order).where(
                Order.staff_id == waiter_id,
                Order.assigned_at >= start,
                Order.assigned_at <= end,
            ).order_by(Order.assigned_at)
        ).all()

        completed = [o for o in orders if o.status == OrderStatus.COMPLETED]
        revenue = sum(o.total_cents for o in completed)
        service_minutes = [
            m for m in (minutes_between(o.assigned_at, o.completed_at) for o in completed) if m is not None
        ]
        ratings = [o.customer_rating for o in orders if o.customer_rating is not None]

        daily: dict[str, dict[str, Any]] = {}
        for order in orders:
            day = as_utc(order.assigned_at).date().isoformat()
            bucket = daily.setdefault(day, {"date": day, "orders": 0, "completed": 0, "revenue": 0})
            bucket["orders"] += 1
            if order.status == OrderStatus.COMPLETED:
                bucket["completed"] += 1
                bucket["revenue"] += order.total_cents

        return {
            "waiter": {
                "id": waiter.id,
                "name": waiter.full_name,
                "branch_id": waiter.branch_id,
                "active_orders_count": waiter.active_orders_count,
                "max_capacity": waiter.max_capacity,
                "total_assignments": waiter.total_assignments,
                "completed_orders": waiter.completed_orders,
            },
            "period": {"start_date": start, "end_date": end},
            "summary": {
                "total_orders": len(orders),
                "completed_orders": len(completed),
                "completion_rate": round(len(completed) / len(orders) * 100, 1) if orders else 0.0,
                "total_revenue": revenue,
                "avg_order_value": round(revenue / len(completed)) if completed else 0,
                "avg_service_minutes": _avg(service_minutes),
                "avg_customer_rating": _avg(ratings, 2),
            },
            "daily_trends": list(daily.values()),
        }

    def system_metrics(
        self,
        start: datetime,
        end: datetime,
        monitoring: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        _check_period(start, end)
        history = self._db.execute(
            select(OrderAssignmentHistory.action, OrderAssignmentHistory.method).where(
                OrderAssignmentHistory.created_at >= start,
                OrderAssignmentHistory.created_at <= end,
            )
        ).all()
        by_method = Counter(method for action, method in history if action == HistoryAction.ASSIGNED)

        # Payment-to-assignment latency of orders assigned in the window
        latency_rows = self._db.execute(
            select(Order.paid_at, Order.assigned_at).where(
                Order.assigned_at >= start,
                Order.assigned_at <= end,
                Order.paid_at.is_not(None),
            )
        ).all()
        latencies = [
            (as_utc(assigned) - as_utc(paid)).total_seconds()
            for paid, assigned in latency_rows
            if as_utc(assigned) >= as_utc(paid)
        ]

        monitoring = monitoring or {}
        return {
            "period": {"start_date": start, "end_date": end},
            "total_assignments": sum(by_method.values()),
            "assignments_by_method": dict(by_method),
            "reassignments": sum(1 for action, _ in history if action == HistoryAction.REMOVED),
            "timeouts_detected": monitoring.get("total_timeouts_detected", 0),
            "average_assignment_seconds": _avg(latencies),
            "monitoring": {
                "is_running": monitoring.get("is_running", False),
                "interval_seconds": monitoring.get("interval_seconds", settings.assignment_monitor_interval_seconds),
                "last_run_at": monitoring.get("last_run_at"),
            },
        }

    def system_health(self, monitoring: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Overall status plus the counts and thresholds behind it. A database
        failure makes the report unhealthy instead of raising.
        """
        warnings: list[str] = []
        critical = False
        monitoring = monitoring or {}

        try:
            self._db.execute(text("SELECT 1"))
            database = {
                "connected": True,
                "hotels": self._count(Hotel),
                "branches": self._count(Branch),
                "waiters": self._db.scalar(
                    select(func.count(Staff.id)).where(Staff.role == Roles.WAITER, Staff.is_active.is_(True))
                ) or 0,
                "active_orders": self._db.scalar(
                    select(func.count(Order.id)).where(Order.status.in_(OrderStatus.ACTIVE))
                ) or 0,
            }
            utilization = self._registry.get_utilization()
            queue = self._queue.stats()
        except Exception as e:
            logger.error("System health check failed", error=str(e), exc_info=True)
            self._db.rollback()
            return {
                "status": status_from_warnings(["Database unreachable"], critical=True).value,
                "database": {"connected": False, "error": str(e)},
                "utilization": None,
                "queue": None,
                "monitoring": monitoring,
                "warnings": ["Database unreachable"],
                "last_health_check": utc_now(),
            }

        if utilization["utilization_percentage"] > settings.assignment_utilization_warning:
            warnings.append(
                f"High waiter utilization: {utilization['utilization_percentage']}%"
            )
        if queue["total_queued"] > settings.assignment_queue_warning:
            warnings.append(f"Large assignment queue: {queue['total_queued']} orders waiting")
        if database["waiters"] and utilization["available_waiters"] == 0:
            warnings.append("No waiters available for assignment")
        if settings.assignment_monitor_enabled and not monitoring.get("is_running", False):
            warnings.append("Monitoring loop is not running")
        if database["branches"] and not database["waiters"]:
            critical = True
            warnings.append("No waiters registered")

        return {
            "status": status_from_warnings(warnings, critical=critical).value,
            "database": database,
            "utilization": utilization,
            "queue": queue,
            "monitoring": monitoring,
            "warnings": warnings,
            "last_health_check": utc_now(),
        }

    def _count(self, model) -> int:
        return self._db.scalar(select(func.count(model.id)).where(model.is_active.is_(True))) or 0
