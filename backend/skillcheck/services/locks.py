from __future__ import annotations

import asyncio
import weakref


class CandidateLocks:
    """
    One asyncio.Lock per candidate, so a session's own events (answer, timeout,
    visibility loss) are handled one at a time. Locks are dropped once nobody holds them.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, candidate_id: str) -> asyncio.Lock:
        lock = self._locks.get(candidate_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[candidate_id] = lock
        return lock


candidate_locks = CandidateLocks()
