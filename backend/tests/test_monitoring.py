"""
Tests for the assignment monitoring loop.
"""

import asyncio
import threading
import time
from datetime import timedelta

from rest_api.services.assignment import AssignmentEngine, MonitoringLoop
from shared.config.constants import EventType
from shared.utils.dates import utc_now


class _ScriptedLoop(MonitoringLoop):
    """Loop whose branch list and sweeps are supplied by the test."""

    def __init__(self, branch_ids, sweep, **kwargs):
        super().__init__(**kwargs)
        self._branch_ids = branch_ids
        self._sweep = sweep

    def _active_branch_ids(self):
        return list(self._branch_ids)

    def _sweep_branch(self, branch_id):
        return self._sweep(branch_id)


def _ok(branch_id):
    result = MonitoringLoop._empty_result(branch_id)
    result["assigned"] = 1
    return result


class TestCycleGuard:

    async def test_overlapping_cycle_is_skipped(self):
        release = threading.Event()

        def blocking(branch_id):
            release.wait(timeout=5)
            return _ok(branch_id)

        loop = _ScriptedLoop([1], blocking)
        first = asyncio.create_task(loop.run_cycle(trigger="scheduled"))
        while not loop._cycle_lock.locked():
            await asyncio.sleep(0.01)

        skipped = await loop.run_cycle(trigger="manual")
        release.set()
        completed = await first

        assert skipped["skipped"] is True
        assert completed["skipped"] is False
        assert completed["assigned"] == 1
        status = loop.status()
        assert status["cycles_completed"] == 1
        assert status["cycles_skipped"] == 1


class TestBranchIsolation:

    async def test_failing_branch_does_not_stop_others(self):
        def sweep(branch_id):
            if branch_id == 2:
                raise RuntimeError("database went away")
            return _ok(branch_id)

        summary = await _ScriptedLoop([1, 2, 3], sweep).run_cycle()

        assert summary["branches_processed"] == 3
        assert summary["assigned"] == 2
        assert summary["errors"] == 1
        failed = next(r for r in summary["branches"] if r["branch_id"] == 2)
        assert failed["errors"] == ["database went away"]

    async def test_slow_branch_times_out(self):
        def sweep(branch_id):
            if branch_id == 1:
                time.sleep(0.5)
            return _ok(branch_id)

        summary = await _ScriptedLoop([1, 2], sweep, branch_timeout_seconds=0.05).run_cycle()

        slow = next(r for r in summary["branches"] if r["branch_id"] == 1)
        assert slow["errors"][0].startswith("timeout")
        assert summary["assigned"] == 1

    async def test_branch_with_running_sweep_is_skipped(self):
        release = threading.Event()
        calls = []

        def sweep(branch_id):
            calls.append(branch_id)
            if branch_id == 1:
                release.wait(timeout=5)
            return _ok(branch_id)

        loop = _ScriptedLoop([1, 2], sweep, branch_timeout_seconds=0.05)
        first = await loop.run_cycle()
        second = await loop.run_cycle()

        assert first["branches"][0]["errors"][0].startswith("timeout")
        assert second["branches"][0]["errors"] == ["previous sweep still running"]
        assert second["branches"][1]["errors"] == []
        assert calls.count(1) == 1
        assert loop.status()["sweeps_in_flight"] == [1]

        release.set()
        while loop.status()["sweeps_in_flight"]:
            await asyncio.sleep(0.01)

        third = await loop.run_cycle()
        assert third["branches"][0]["errors"] == []
        assert calls.count(1) == 2


class TestSweep:

    async def test_sweep_drains_queue_and_resubmits_orphans(
        self, db_session, seed_hierarchy, make_order, set_load, publisher, transport, locks, monitor
    ):
        waiters = seed_hierarchy["waiters"]
        for waiter in waiters:
            set_load(waiter, 3)
        queued = make_order()
        AssignmentEngine(db_session, publisher, locks).automatic_assign(queued.id)
        orphan = make_order(paid_at=utc_now() - timedelta(minutes=30))

        # Two slots free up without going through the engine
        set_load(waiters[0], 1)
        db_session.commit()

        summary = await monitor.run_cycle(trigger="test")

        result = summary["branches"][0]
        assert result["errors"] == []
        assert result["assigned"] == 1
        assert result["orphans_resubmitted"] == 1
        assert result["utilization"]["used_capacity"] == 9

        db_session.expire_all()
        assert queued.staff_id == waiters[0].id
        assert orphan.staff_id == waiters[0].id
        assert monitor.snapshot(seed_hierarchy["branch"].id)["at_capacity_waiters"] == 3
        assert transport.events(EventType.QUEUE_UPDATED)

    async def test_start_and_stop(self):
        loop = _ScriptedLoop([], _ok, interval_seconds=0.01)

        await loop.start()
        await asyncio.sleep(0.05)
        assert loop.is_running
        await loop.stop()

        assert not loop.is_running
        assert loop.status()["cycles_completed"] >= 1

