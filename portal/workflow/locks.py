"""
portal/workflow/locks.py
------------------------
Per-requisition mutual exclusion inside one process.

Two transitions on the same requisition run one after the other; transitions
on different requisitions never wait on each other. Across processes the
row lock (SELECT … FOR UPDATE) and the version check on the requisition
row give the same ordering.

A requisition's lock lives in the registry only while someone holds or
waits for it.
"""
import threading
from contextlib import contextmanager


class RequisitionLocks:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}    # requisition id -> [lock, holders + waiters]

    def _acquire_slot(self, requisition_id):
        with self._guard:
            slot = self._locks.get(requisition_id)
            if slot is None:
                slot = self._locks[requisition_id] = [threading.Lock(), 0]
            slot[1] += 1
            return slot[0]

    def _release_slot(self, requisition_id):
        with self._guard:
            slot = self._locks[requisition_id]
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[requisition_id]

    @contextmanager
    def hold(self, requisition_id):
        lock = self._acquire_slot(requisition_id)
        try:
            with lock:
                yield
        finally:
            self._release_slot(requisition_id)

    def __len__(self):
        with self._guard:
            return len(self._locks)
