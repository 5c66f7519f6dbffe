"""
Intent Store - concurrency-safe map of intent_id -> IntentRecord.

Shared between the session receive loop and every in-flight settlement
task. Records are immutable, so the value returned by ``get`` is a snapshot:
later writes replace the stored record instead of mutating it.

The lock is held only for the dict operation itself, never across I/O.
"""

import time
from typing import Any, Dict, List, Optional

from ccsolver.core.intent.intent import IntentRecord, IntentState
from ccsolver.utils.logger import get_logger
from ccsolver.utils.rwlock import AsyncRWLock

logger = get_logger("store")


class IntentStore:
    """
    In-memory intent records.

    Nothing here survives a restart: a crashed solver resumes with an empty
    store and any settlement that was in flight must be audited manually.
    """

    def __init__(self):
        self._records: Dict[str, IntentRecord] = {}
        self._lock = AsyncRWLock()

    async def insert(self, record: IntentRecord) -> None:
        """Insert or overwrite (last write wins)."""
        async with self._lock.write():
            previous = self._records.get(record.intent_id)
            self._records[record.intent_id] = record
        if previous is not None:
            logger.warning(f"Duplicate intent {record.intent_id}, previous record overwritten")

    async def get(self, intent_id: str) -> Optional[IntentRecord]:
        """Snapshot of the record, or None."""
        async with self._lock.read():
            return self._records.get(intent_id)

    async def remove(self, intent_id: str) -> Optional[IntentRecord]:
        """Remove a record. Removing an absent id is a no-op."""
        async with self._lock.write():
            return self._records.pop(intent_id, None)

    async def update_state(self, intent_id: str, state: IntentState, **changes: Any) -> Optional[IntentRecord]:
        """
        Transition a stored record, applying ``changes`` to its fields.

        Returns:
            The new record, or None if the intent is not stored
        """
        async with self._lock.write():
            record = self._records.get(intent_id)
            if record is None:
                return None
            updated = record.with_state(state, **changes)
            self._records[intent_id] = updated
            return updated

    async def expire(self, max_age: float, now: Optional[float] = None) -> List[IntentRecord]:
        """
        Drop QUOTED records older than ``max_age`` seconds.

        These are bids whose auction result never arrived.

        Returns:
            The dropped records, marked TIMEOUT
        """
        now = now if now is not None else time.time()
        expired: List[IntentRecord] = []
        async with self._lock.write():
            for intent_id, record in list(self._records.items()):
                if record.state == IntentState.QUOTED and record.age(now) > max_age:
                    del self._records[intent_id]
                    expired.append(record.with_state(IntentState.TIMEOUT))
        return expired

    async def size(self) -> int:
        async with self._lock.read():
            return len(self._records)

    def stats(self) -> dict:
        """Counts by state (unlocked read, for diagnostics only)."""
        counts: Dict[str, int] = {}
        for record in list(self._records.values()):
            counts[record.state.value] = counts.get(record.state.value, 0) + 1
        return {"records": len(self._records), "by_state": counts}
