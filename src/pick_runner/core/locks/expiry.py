"""Lease expiry policy for lock records."""

from __future__ import annotations

from pick_runner.core.constants import LOCK_TTL_MS
from pick_runner.core.locks.records import LockRecord, now_ms


def lock_age_ms(record: LockRecord, now: int | None = None) -> int:
    """Age of a record, measured from the store-assigned creation time."""
    current = now_ms() if now is None else now
    return current - record.created_at_ms


def is_expired(record: LockRecord, ttl_ms: int = LOCK_TTL_MS, now: int | None = None) -> bool:
    """Return True when the record is older than ``ttl_ms`` and may be reclaimed.

    The comparison is strict: a record exactly ``ttl_ms`` old is still live.
    """
    return lock_age_ms(record, now) > ttl_ms
