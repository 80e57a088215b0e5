"""
Per-branch serialization for the assignment path.

Inside one worker process, assignment attempts for the same branch take the
branch's lock; across processes the RoundRobinCursor row lock
(SELECT ... FOR UPDATE) does the same job. Different branches never contend.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class BranchLockRegistry:
    """Lazily created re-entrant lock per branch id."""

    def __init__(self):
        self._locks: dict[int, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, branch_id: int) -> threading.RLock:
        lock = self._locks.get(branch_id)
        if lock is None:
            with self._guard:
                lock = self._locks.setdefault(branch_id, threading.RLock())
        return lock

    @contextmanager
    def hold(self, branch_id: int) -> Iterator[None]:
        lock = self.get(branch_id)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


_branch_locks = BranchLockRegistry()


def get_branch_locks() -> BranchLockRegistry:
    """Process-wide lock registry shared by every engine instance."""
    return _branch_locks
