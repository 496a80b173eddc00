"""Per-offering serialization.

Every mutation touching an offering's reserve ledger, its liquidity
requests, or its secondary listings runs while holding that offering's
lock. Check-then-reserve is therefore a single critical section per
offering, and two concurrent approvals can never both see enough reserve.
Different offerings use different locks and proceed in parallel.

Locks are re-entrant so a gateway operation may hold the lock while
calling into an engine method that takes it again.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class OfferingLocks:
    """Registry of one re-entrant lock per offering id."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, offering_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(offering_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[offering_id] = lock
            return lock

    @contextmanager
    def serialized(self, offering_id: str) -> Iterator[None]:
        """Hold ``offering_id``'s lock for the duration of the block."""
        lock = self.lock_for(offering_id)
        with lock:
            yield
