"""Git ref mutex: acquire/retry/release over an atomic create-if-absent store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from pick_runner.core.constants import (
    DEFAULT_LOCK_RETRY_INTERVAL_MS,
    DEFAULT_LOCK_TIMEOUT_MS,
    LOCK_TTL_MS,
    MAX_IMMEDIATE_RETRIES,
)
from pick_runner.core.exceptions import LockConflictError, LockRecordNotFoundError, MutexStateError
from pick_runner.core.locks.expiry import is_expired, lock_age_ms
from pick_runner.core.locks.guard import LifecycleGuard
from pick_runner.core.locks.records import (
    HolderMetadata,
    LockRecord,
    LockState,
    now_ms,
    record_name_for,
    validate_lock_key,
)
from pick_runner.core.locks.stores import RefStore


class GitMutex:
    """Mutual exclusion for one key across independent workflow runs.

    The handle is not reentrant and not shared: one instance per caller,
    one held lock at a time. ``acquire`` returns False on timeout, which is
    a normal outcome; any store failure other than contention or absence
    propagates unchanged.

    Example:
        mutex = GitMutex(store, "deploy-runner")
        with mutex.hold(timeout_ms=60_000) as acquired:
            if acquired:
                ...
    """

    def __init__(
        self,
        store: RefStore,
        key: str,
        *,
        metadata: HolderMetadata | None = None,
        ttl_ms: int = LOCK_TTL_MS,
        clock: Callable[[], int] | None = None,
        sleep: Callable[[float], None] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.key = validate_lock_key(key)
        self.record_name = record_name_for(self.key)
        self.metadata = metadata
        self.ttl_ms = ttl_ms
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock or now_ms
        self._sleep = sleep or time.sleep

        self._state = LockState.UNACQUIRED
        self._record: LockRecord | None = None
        self.conflicts = 0
        self.reclaims = 0

    def __repr__(self) -> str:
        return f"GitMutex(key={self.key!r}, state={self._state.value})"

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def acquired(self) -> bool:
        return self._state is LockState.ACQUIRED

    @property
    def record(self) -> LockRecord | None:
        """The record this handle created, while it is held."""
        return self._record

    def acquire(
        self,
        timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
        retry_interval_ms: int = DEFAULT_LOCK_RETRY_INTERVAL_MS,
    ) -> bool:
        """Try to take the lock, retrying until ``timeout_ms`` elapses.

        Args:
            timeout_ms: Upper bound for the retry loop. It is checked between
                attempts, so a sleep in progress finishes before the loop exits.
            retry_interval_ms: Sleep between attempts while the lock is held
                by a live holder.

        Returns:
            True if the lock is now held, False if the timeout elapsed.

        Raises:
            MutexStateError: If this handle is not in the unacquired state.
            ValueError: For a negative timeout or non-positive interval.
        """
        if timeout_ms < 0:
            raise ValueError("timeout_ms cannot be negative")
        if retry_interval_ms <= 0:
            raise ValueError("retry_interval_ms must be positive")
        if self._state is not LockState.UNACQUIRED:
            raise MutexStateError(self.key, self._state.value)

        self._state = LockState.ACQUIRING
        self.conflicts = 0
        self.reclaims = 0
        immediate_retries = 0
        start = self._clock()

        try:
            while self._clock() - start < timeout_ms:
                try:
                    record = self.store.create_atomic(self.record_name, self._holder_metadata())
                except LockConflictError:
                    self.conflicts += 1
                else:
                    self._record = record
                    self._state = LockState.ACQUIRED
                    self.logger.info("Mutex lock acquired: %s", self.key)
                    return True

                if immediate_retries < MAX_IMMEDIATE_RETRIES and self._clear_if_expired():
                    immediate_retries += 1
                    continue

                immediate_retries = 0
                self.logger.info("Mutex lock busy: %s, retrying in %dms...", self.key, retry_interval_ms)
                self._sleep(retry_interval_ms / 1000)
        except BaseException:
            self._state = LockState.UNACQUIRED
            raise

        self._state = LockState.UNACQUIRED
        self.logger.info("Mutex lock timeout: %s (%d conflicts)", self.key, self.conflicts)
        return False

    def release(self) -> None:
        """Release the lock if held. Never raises.

        A record that is already gone, or that now belongs to another holder
        after reclamation, counts as released. Other failures are logged and
        leave the handle acquired so a later call can retry.
        """
        if self._state is not LockState.ACQUIRED:
            return

        self._state = LockState.RELEASING
        released = False
        try:
            if self._held_by_other():
                self.logger.warning("Mutex lock %s was reclaimed by another holder; not deleting it", self.key)
            else:
                self.store.delete(self.record_name)
                self.logger.info("Mutex lock released: %s", self.key)
            released = True
        except LockRecordNotFoundError:
            self.logger.debug("Mutex lock %s already removed", self.key)
            released = True
        except Exception as e:
            self.logger.error(f"Error releasing mutex lock {self.key}: {e}")
        finally:
            if released:
                self._state = LockState.UNACQUIRED
                self._record = None
            else:
                self._state = LockState.ACQUIRED

    @contextmanager
    def hold(
        self,
        timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
        retry_interval_ms: int = DEFAULT_LOCK_RETRY_INTERVAL_MS,
        *,
        handle_signals: bool = True,
    ) -> Iterator[bool]:
        """Acquire for the duration of a ``with`` block.

        Yields the acquire result. When acquired, the block runs under a
        LifecycleGuard so the lock is released however the block exits.
        """
        if not self.acquire(timeout_ms, retry_interval_ms):
            yield False
            return
        guard = LifecycleGuard(
            self.release,
            name=f"mutex lock {self.key}",
            logger=self.logger,
            handle_signals=handle_signals,
        )
        with guard:
            yield True

    def _holder_metadata(self) -> HolderMetadata:
        created_at = int(self._clock())
        if self.metadata is None:
            return HolderMetadata.from_environment(created_at)
        return replace(self.metadata, created_at_ms=created_at)

    def _clear_if_expired(self) -> bool:
        """Reclaim an expired record. Returns True when an immediate retry is warranted."""
        try:
            record = self.store.read(self.record_name)
        except LockRecordNotFoundError:
            self.logger.debug("Mutex lock %s vanished before expiry check", self.key)
            return True

        now = int(self._clock())
        if not is_expired(record, self.ttl_ms, now=now):
            return False

        age_seconds = round(lock_age_ms(record, now) / 1000)
        self.logger.info("Cleaning expired mutex lock: %s (age: %ds)", self.key, age_seconds)
        try:
            self.store.delete(self.record_name)
        except LockRecordNotFoundError:
            self.logger.debug("Expired mutex lock %s already removed", self.key)
        self.reclaims += 1
        return True

    def _held_by_other(self) -> bool:
        current = self.store.read(self.record_name)
        return self._record is not None and current.revision != self._record.revision


def release_lock_record(store: RefStore, key: str, logger: logging.Logger | None = None) -> bool:
    """Delete the record for ``key`` regardless of holder.

    Used by a later workflow step to hand back a lock kept with
    ``--keep-lock``. Returns False when there was nothing to delete.
    """
    log = logger or logging.getLogger(__name__)
    name = record_name_for(key)
    try:
        store.delete(name)
    except LockRecordNotFoundError:
        log.info("Mutex lock %s is not held", key)
        return False
    log.info("Mutex lock released: %s", key)
    return True


def describe_lock(store: RefStore, key: str, ttl_ms: int = LOCK_TTL_MS, now: int | None = None) -> dict[str, Any]:
    """Diagnostic view of the record for ``key``."""
    name = record_name_for(key)
    try:
        record = store.read(name)
    except LockRecordNotFoundError:
        return {"key": key, "name": name, "held": False}
    current = now_ms() if now is None else now
    return {
        "key": key,
        "held": True,
        **record.to_dict(),
        "age_ms": lock_age_ms(record, current),
        "expired": is_expired(record, ttl_ms, now=current),
    }
