"""Locking subsystem for cross-workflow coordination.

A mutex is a record in a shared namespace that only one party can create at
a time. Records are Git references in production and an in-memory map in
tests; both sit behind the ``RefStore`` protocol.
"""

from pick_runner.core.locks.expiry import is_expired, lock_age_ms
from pick_runner.core.locks.guard import LifecycleGuard
from pick_runner.core.locks.mutex import GitMutex, describe_lock, release_lock_record
from pick_runner.core.locks.records import (
    HolderMetadata,
    LockRecord,
    LockState,
    record_name_for,
    validate_lock_key,
)
from pick_runner.core.locks.stores import GitRefStore, InMemoryRefStore, RefStore

__all__ = [
    "GitMutex",
    "GitRefStore",
    "HolderMetadata",
    "InMemoryRefStore",
    "LifecycleGuard",
    "LockRecord",
    "LockState",
    "RefStore",
    "describe_lock",
    "is_expired",
    "lock_age_ms",
    "record_name_for",
    "release_lock_record",
    "validate_lock_key",
]
