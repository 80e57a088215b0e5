"""
Services module for business logic.

- assignment/: waiter registry, selection policies, queue, engine,
  reports and the monitoring loop

Usage:
    from rest_api.services.assignment import AssignmentEngine
    engine = AssignmentEngine(db, publisher)
    engine.automatic_assign(order_id)
"""

from .assignment import AssignmentEngine, AssignmentReports, MonitoringLoop

__all__ = ["AssignmentEngine", "AssignmentReports", "MonitoringLoop"]
