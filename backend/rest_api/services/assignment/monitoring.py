"""
Assignment monitoring loop.

Background task that keeps every branch moving without waiting for the next
request:
- drains branch queues into waiters that freed capacity
- re-submits orphaned orders (paid, unassigned, unqueued, older than the
  orphan timeout)
- flags orders stuck in preparation past the preparation limit
- refreshes and publishes branch utilization

Runs as a FastAPI background task started from the lifespan. A cycle can
also be forced through the API; cycles never overlap, a cycle requested
while one is running is skipped.

Each branch sweep runs in a worker thread with its own session and a
timeout, so a slow or failing branch never blocks the others. A timed-out
sweep cannot be cancelled: its thread runs to completion, and the branch is
skipped by later cycles until that thread has finished.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import Branch
from shared.config.logging import monitoring_logger as logger
from shared.config.settings import settings
from shared.infrastructure.correlation import correlation_scope
from shared.infrastructure.db import SessionLocal
from shared.infrastructure.events import EventPublisher
from shared.utils.dates import utc_now
from shared.utils.exceptions import AppException
from shared.utils.responses import camelize

from .engine import AssignmentEngine


class MonitoringLoop:
    """
    Periodic assignment sweeps.

    Args:
        session_factory: Creates a Session per branch sweep.
        publisher: Shared event publisher (thread-safe enough for counters
            and redis publish).
        interval_seconds / branch_timeout_seconds: Override settings.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        publisher: EventPublisher | None = None,
        interval_seconds: float | None = None,
        branch_timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._publisher = publisher
        self._interval = interval_seconds or settings.assignment_monitor_interval_seconds
        self._branch_timeout = branch_timeout_seconds or settings.assignment_branch_sweep_timeout_seconds

        self._running = False
        self._task: asyncio.Task | None = None
        self._cycle_lock = asyncio.Lock()

        self._last_run_at = None
        self._last_duration_ms: float | None = None
        self._last_result: dict[str, Any] | None = None
        self._cycles_completed = 0
        self._cycles_skipped = 0
        self._total_assigned = 0
        self._total_orphans = 0
        self._total_timeouts = 0
        self._total_errors = 0
        self._snapshots: dict[int, dict[str, Any]] = {}
        self._sweeps_in_flight: set[int] = set()
        self._in_flight_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the periodic loop."""
        if self._running:
            logger.warning("Monitoring loop already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Monitoring loop started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the loop gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Monitoring loop stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle(trigger="scheduled")
            except Exception as e:
                logger.error("Monitoring cycle crashed", error=str(e), exc_info=True)
            await asyncio.sleep(self._interval)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self, trigger: str = "manual") -> dict[str, Any]:
        """
        Sweep every active branch once.

        Returns the cycle summary, or {"skipped": True, ...} when another
        cycle is in progress.
        """
        if self._cycle_lock.locked():
            self._cycles_skipped += 1
            logger.info("Monitoring cycle skipped, previous cycle still running", trigger=trigger)
            return {"skipped": True, "reason": "cycle already running", "trigger": trigger}

        async with self._cycle_lock:
            with correlation_scope("monitor") as cycle_id:
                started = time.perf_counter()
                started_at = utc_now()

                branch_ids = await asyncio.to_thread(self._active_branch_ids)
                results = []
                for branch_id in branch_ids:
                    results.append(await self._sweep_with_timeout(branch_id))

                duration_ms = (time.perf_counter() - started) * 1000
                summary = {
                    "skipped": False,
                    "cycle_id": cycle_id,
                    "trigger": trigger,
                    "started_at": started_at,
                    "duration_ms": round(duration_ms, 1),
                    "branches_processed": len(results),
                    "assigned": sum(r["assigned"] for r in results),
                    "orphans_resubmitted": sum(r["orphans_resubmitted"] for r in results),
                    "timeouts_detected": sum(r["timeouts_detected"] for r in results),
                    "errors": sum(len(r["errors"]) for r in results),
                    "branches": results,
                }

                self._cycles_completed += 1
                self._last_run_at = started_at
                self._last_duration_ms = summary["duration_ms"]
                self._last_result = summary
                self._total_assigned += summary["assigned"]
                self._total_orphans += summary["orphans_resubmitted"]
                self._total_timeouts += summary["timeouts_detected"]
                self._total_errors += summary["errors"]

                log = logger.warning if summary["errors"] else logger.info
                log(
                    "Monitoring cycle finished",
                    trigger=trigger,
                    branches=len(results),
                    assigned=summary["assigned"],
                    orphans=summary["orphans_resubmitted"],
                    timeouts=summary["timeouts_detected"],
                    errors=summary["errors"],
                    duration_ms=summary["duration_ms"],
                )
                return summary

    async def _sweep_with_timeout(self, branch_id: int) -> dict[str, Any]:
        with self._in_flight_lock:
            if branch_id in self._sweeps_in_flight:
                logger.warning("Branch sweep skipped, previous sweep still running", branch_id=branch_id)
                return self._empty_result(branch_id, "previous sweep still running")
            self._sweeps_in_flight.add(branch_id)
        # Shielded so a timeout never cancels a sweep that has not started yet
        sweep = asyncio.ensure_future(asyncio.to_thread(self._tracked_sweep, branch_id))
        try:
            return await asyncio.wait_for(asyncio.shield(sweep), timeout=self._branch_timeout)
        except asyncio.TimeoutError:
            logger.error("Branch sweep timed out", branch_id=branch_id, timeout=self._branch_timeout)
            sweep.add_done_callback(self._log_late_sweep)
            return self._empty_result(branch_id, f"timeout after {self._branch_timeout}s")
        except Exception as e:
            logger.error("Branch sweep failed", branch_id=branch_id, error=str(e), exc_info=True)
            return self._empty_result(branch_id, str(e))

    def _tracked_sweep(self, branch_id: int) -> dict[str, Any]:
        try:
            return self._sweep_branch(branch_id)
        finally:
            with self._in_flight_lock:
                self._sweeps_in_flight.discard(branch_id)

    @staticmethod
    def _log_late_sweep(sweep: asyncio.Future) -> None:
        if sweep.cancelled():
            return
        if sweep.exception() is not None:
            logger.error("Timed-out branch sweep failed", error=str(sweep.exception()))
        else:
            logger.info("Timed-out branch sweep finished", branch_id=sweep.result()["branch_id"])

    @staticmethod
    def _empty_result(branch_id: int, error: str | None = None) -> dict[str, Any]:
        return {
            "branch_id": branch_id,
            "assigned": 0,
            "orphans_resubmitted": 0,
            "timeouts_detected": 0,
            "utilization": None,
            "errors": [error] if error else [],
        }

    def _active_branch_ids(self) -> list[int]:
        db = self._session_factory()
        try:
            return list(db.scalars(select(Branch.id).where(Branch.is_active.is_(True)).order_by(Branch.id)).all())
        finally:
            db.close()

    def _sweep_branch(self, branch_id: int) -> dict[str, Any]:
        """Three sweeps for one branch. Runs in a worker thread."""
        result = self._empty_result(branch_id)
        db = self._session_factory()
        try:
            engine = AssignmentEngine(db, self._publisher)

            # 1. Queue draining
            try:
                result["assigned"] = len(engine.assign_from_queue(branch_id))
            except Exception as e:
                logger.error("Queue drain failed", branch_id=branch_id, error=str(e))
                result["errors"].append(f"queue: {e}")

            # 2. Orphan detection
            try:
                for order_id in engine.find_orphans(branch_id):
                    try:
                        engine.automatic_assign(order_id)
                        result["orphans_resubmitted"] += 1
                    except AppException as e:
                        result["errors"].append(f"order {order_id}: {e.detail}")
                if result["orphans_resubmitted"]:
                    logger.info(
                        "Orphaned orders re-submitted",
                        branch_id=branch_id,
                        count=result["orphans_resubmitted"],
                    )
            except Exception as e:
                db.rollback()
                logger.error("Orphan sweep failed", branch_id=branch_id, error=str(e))
                result["errors"].append(f"orphans: {e}")

            # Preparation timeouts
            try:
                result["timeouts_detected"] = len(engine.detect_timeouts(branch_id))
            except Exception as e:
                db.rollback()
                result["errors"].append(f"timeouts: {e}")

            # 3. Metrics refresh
            try:
                utilization = engine.registry.get_utilization(branch_id=branch_id)
                result["utilization"] = utilization
                self._snapshots[branch_id] = utilization
                branch = db.get(Branch, branch_id)
                if self._publisher is not None and branch is not None:
                    self._publisher.queue_updated(
                        branch_id=branch_id,
                        hotel_id=branch.hotel_id,
                        summary=camelize({**engine.queue.stats(branch_id=branch_id), "utilization": utilization}),
                    )
            except Exception as e:
                db.rollback()
                result["errors"].append(f"metrics: {e}")
        finally:
            db.close()
        return result

    # =========================================================================
    # Status
    # =========================================================================

    def snapshot(self, branch_id: int) -> dict[str, Any] | None:
        """Utilization cached by the last sweep of the branch."""
        return self._snapshots.get(branch_id)

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "enabled": settings.assignment_monitor_enabled,
            "interval_seconds": self._interval,
            "branch_timeout_seconds": self._branch_timeout,
            "last_run_at": self._last_run_at,
            "last_duration_ms": self._last_duration_ms,
            "cycles_completed": self._cycles_completed,
            "cycles_skipped": self._cycles_skipped,
            "total_assigned": self._total_assigned,
            "total_orphans_resubmitted": self._total_orphans,
            "total_timeouts_detected": self._total_timeouts,
            "total_errors": self._total_errors,
            "sweeps_in_flight": sorted(self._sweeps_in_flight),
            "last_result": self._last_result,
        }


# =============================================================================
# Singleton instance for use in lifespan
# =============================================================================

_monitoring_loop: MonitoringLoop | None = None


def get_monitoring_loop(publisher: EventPublisher | None = None) -> MonitoringLoop:
    """Get or create the process-wide monitoring loop."""
    global _monitoring_loop
    if _monitoring_loop is None:
        _monitoring_loop = MonitoringLoop(publisher=publisher)
    return _monitoring_loop


async def start_monitoring_loop(publisher: EventPublisher | None = None) -> MonitoringLoop:
    """Start the monitoring loop (called from lifespan)."""
    loop = get_monitoring_loop(publisher)
    await loop.start()
    return loop


async def stop_monitoring_loop() -> None:
    """Stop the monitoring loop (called from lifespan shutdown)."""
    global _monitoring_loop
    if _monitoring_loop is not None:
        await _monitoring_loop.stop()
        _monitoring_loop = None
