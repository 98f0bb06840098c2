"""
Daily spend ledger.

Tracks executed spend per (principal, UTC calendar day). Reads and
increments are serialized by a lock so concurrent commits never lose
updates. Records live for the lifetime of the process.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SpendRecord:
    """Total executed spend for one principal on one day."""

    principal_id: str
    day: date
    total_spent: int = 0


class SpendLedger:
    """In-memory per-principal, per-day spend totals."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utc_now
        self._records: dict[tuple[str, date], SpendRecord] = {}
        self._lock = threading.Lock()

    def today(self) -> date:
        """Current calendar day on UTC boundaries."""
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def get_spent(self, principal_id: str, day: Optional[date] = None) -> int:
        key = (principal_id, day or self.today())
        with self._lock:
            record = self._records.get(key)
            return record.total_spent if record else 0

    def add_spent(self, principal_id: str, amount: int, day: Optional[date] = None) -> int:
        """Atomically add to the day's total, creating the record if absent.

        Returns the new total for that key.
        """
        key = (principal_id, day or self.today())
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = SpendRecord(principal_id=principal_id, day=key[1])
                self._records[key] = record
            record.total_spent += amount
            return record.total_spent
