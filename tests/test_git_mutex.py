"""Tests for the Git ref mutex acquire/release protocol."""

from __future__ import annotations

import threading
import time

import pytest

from conftest import FakeClock, RecordingStore, make_metadata, seed_record
from pick_runner.core.exceptions import APIError, ConfigurationError, LockRecordNotFoundError, MutexStateError
from pick_runner.core.locks import (
    GitMutex,
    InMemoryRefStore,
    LockState,
    describe_lock,
    record_name_for,
    release_lock_record,
)

KEY = "deploy-runner"
NAME = record_name_for(KEY)


def _mutex(store, clock: FakeClock, key: str = KEY, **kwargs) -> GitMutex:
    kwargs.setdefault("metadata", make_metadata())
    return GitMutex(store, key, clock=clock, sleep=clock.sleep, **kwargs)


class TestAcquire:
    def test_acquire_free_lock(self, store, clock):
        mutex = _mutex(store, clock)

        assert mutex.acquire(timeout_ms=1000, retry_interval_ms=100) is True
        assert mutex.state is LockState.ACQUIRED
        assert NAME in store
        assert mutex.record.created_at_ms == clock.now
        assert clock.sleeps == []

    def test_holder_metadata_is_stamped_with_acquire_time(self, store, clock):
        mutex = _mutex(store, clock)
        mutex.acquire(1000, 100)

        holder = store.read(NAME).holder
        assert holder.workflow_id == "run-1"
        assert holder.created_at_ms == clock.now

    def test_holder_metadata_defaults_to_actions_environment(self, store, clock, monkeypatch):
        monkeypatch.setenv("GITHUB_RUN_ID", "4242")
        monkeypatch.setenv("GITHUB_JOB", "deploy")
        mutex = GitMutex(store, KEY, clock=clock, sleep=clock.sleep)
        mutex.acquire(1000, 100)

        holder = store.read(NAME).holder
        assert holder.workflow_id == "4242"
        assert holder.job_id == "deploy"
        assert holder.content_sha == "unknown"

    def test_reentrant_acquire_raises(self, store, clock):
        mutex = _mutex(store, clock)
        mutex.acquire(1000, 100)

        with pytest.raises(MutexStateError):
            mutex.acquire(1000, 100)
        assert mutex.state is LockState.ACQUIRED

    @pytest.mark.parametrize(("timeout_ms", "interval_ms"), [(-1, 100), (1000, 0), (1000, -5)])
    def test_invalid_arguments(self, store, clock, timeout_ms, interval_ms):
        mutex = _mutex(store, clock)
        with pytest.raises(ValueError):
            mutex.acquire(timeout_ms, interval_ms)
        assert mutex.state is LockState.UNACQUIRED

    def test_invalid_key_rejected_at_construction(self, store, clock):
        with pytest.raises(ConfigurationError):
            _mutex(store, clock, key="bad key")

    def test_timeout_returns_false_and_keeps_live_record(self, store, clock):
        seed_record(store, KEY, created_at_ms=clock.now)
        mutex = _mutex(store, clock)

        assert mutex.acquire(timeout_ms=3000, retry_interval_ms=1000) is False
        assert mutex.state is LockState.UNACQUIRED
        assert mutex.record is None
        assert store.read(NAME).revision == "seeded"
        assert mutex.conflicts == 3

    def test_expired_record_is_reclaimed_without_sleeping(self, store, clock):
        recording = RecordingStore(store)
        seed_record(store, KEY, created_at_ms=clock.now - 700_000)
        mutex = _mutex(recording, clock)

        assert mutex.acquire(timeout_ms=10_000, retry_interval_ms=1000) is True
        assert clock.sleeps == []
        assert mutex.reclaims == 1
        assert recording.count("delete") == 1
        assert store.read(NAME).revision == mutex.record.revision

    def test_live_record_is_not_deleted(self, store, clock):
        recording = RecordingStore(store)
        seed_record(store, KEY, created_at_ms=clock.now - 60_000)
        mutex = _mutex(recording, clock)

        assert mutex.acquire(timeout_ms=3000, retry_interval_ms=1000) is False
        assert len(clock.sleeps) >= 2
        assert recording.count("delete") == 0
        assert mutex.reclaims == 0
        assert NAME in store

    def test_record_exactly_at_ttl_is_live(self, store, clock):
        seed_record(store, KEY, created_at_ms=clock.now - 600_000)
        mutex = _mutex(store, clock)

        assert mutex.acquire(timeout_ms=500, retry_interval_ms=1000) is False
        assert mutex.reclaims == 0

    def test_custom_ttl(self, store, clock):
        seed_record(store, KEY, created_at_ms=clock.now - 5_000)
        mutex = _mutex(store, clock, ttl_ms=1_000)

        assert mutex.acquire(timeout_ms=1000, retry_interval_ms=100) is True
        assert mutex.reclaims == 1

    def test_vanishing_record_retries_are_bounded(self, store, clock):
        recording = RecordingStore(store)
        seed_record(store, KEY, created_at_ms=clock.now)
        recording.failures["read"] = LockRecordNotFoundError(NAME)
        mutex = _mutex(recording, clock)

        assert mutex.acquire(timeout_ms=2000, retry_interval_ms=1000) is False
        # One attempt plus three immediate retries per sleep cycle
        assert mutex.conflicts == 8
        assert clock.sleeps == [1.0, 1.0]

    def test_store_error_propagates_without_retry(self, store, clock):
        recording = RecordingStore(store)
        recording.failures["create_atomic"] = APIError(
            "GitHub API request failed", status_code=403, operation="create ref", details="Forbidden"
        )
        mutex = _mutex(recording, clock)

        with pytest.raises(APIError) as exc_info:
            mutex.acquire(timeout_ms=10_000, retry_interval_ms=1000)
        assert exc_info.value.status_code == 403
        assert recording.count("create_atomic") == 1
        assert clock.sleeps == []
        assert mutex.state is LockState.UNACQUIRED

    def test_error_during_expiry_check_propagates(self, store, clock):
        recording = RecordingStore(store)
        seed_record(store, KEY, created_at_ms=clock.now)
        recording.failures["read"] = OSError("connection reset")
        mutex = _mutex(recording, clock)

        with pytest.raises(OSError):
            mutex.acquire(timeout_ms=10_000, retry_interval_ms=1000)
        assert mutex.state is LockState.UNACQUIRED

    def test_contended_scenario_counts_conflicts(self, store, clock):
        start = clock.now
        holder = _mutex(store, clock, metadata=make_metadata("run-a"))
        waiter = _mutex(store, clock, metadata=make_metadata("run-b"))

        assert holder.acquire(timeout_ms=10_000, retry_interval_ms=1000) is True
        clock.at(start + 9_000, holder.release)
        clock.now = start + 1_000

        assert waiter.acquire(timeout_ms=10_000, retry_interval_ms=1000) is True
        assert waiter.conflicts == (9_000 - 1_000) // 1_000
        assert clock.now == start + 9_000
        assert holder.state is LockState.UNACQUIRED
        assert store.read(NAME).holder.workflow_id == "run-b"


class TestRelease:
    def test_release_deletes_record(self, store, clock):
        mutex = _mutex(store, clock)
        mutex.acquire(1000, 100)

        mutex.release()
        assert NAME not in store
        assert mutex.state is LockState.UNACQUIRED
        assert mutex.record is None

    def test_release_is_idempotent(self, store, clock):
        recording = RecordingStore(store)
        mutex = _mutex(recording, clock)
        mutex.acquire(1000, 100)
        mutex.release()
        calls_after_first = list(recording.calls)

        mutex.release()
        assert recording.calls == calls_after_first

    def test_release_without_acquire_makes_no_store_calls(self, store, clock):
        recording = RecordingStore(store)
        _mutex(recording, clock).release()
        assert recording.calls == []

    def test_release_tolerates_missing_record(self, store, clock):
        mutex = _mutex(store, clock)
        mutex.acquire(1000, 100)
        store.delete(NAME)

        mutex.release()
        assert mutex.state is LockState.UNACQUIRED

    def test_release_leaves_reclaimed_record_alone(self, store, clock):
        mutex = _mutex(store, clock)
        mutex.acquire(1000, 100)
        seed_record(store, KEY, created_at_ms=clock.now, revision="new-holder")

        mutex.release()
        assert store.read(NAME).revision == "new-holder"
        assert mutex.state is LockState.UNACQUIRED

    def test_release_error_is_logged_and_retryable(self, store, clock, caplog):
        recording = RecordingStore(store)
        mutex = _mutex(recording, clock)
        mutex.acquire(1000, 100)
        recording.failures["delete"] = APIError("GitHub API request failed", status_code=502)

        mutex.release()
        assert mutex.state is LockState.ACQUIRED
        assert "Error releasing mutex lock" in caplog.text

        del recording.failures["delete"]
        mutex.release()
        assert mutex.state is LockState.UNACQUIRED
        assert NAME not in store

    def test_handle_can_be_reacquired_after_release(self, store, clock):
        mutex = _mutex(store, clock)
        assert mutex.acquire(1000, 100)
        mutex.release()
        assert mutex.acquire(1000, 100)


class TestHold:
    def test_hold_releases_on_normal_exit(self, store, clock):
        mutex = _mutex(store, clock)
        with mutex.hold(1000, 100) as acquired:
            assert acquired is True
            assert NAME in store
        assert NAME not in store
        assert mutex.state is LockState.UNACQUIRED

    def test_hold_releases_on_exception(self, store, clock):
        mutex = _mutex(store, clock)
        with pytest.raises(RuntimeError, match="boom"):
            with mutex.hold(1000, 100):
                raise RuntimeError("boom")
        assert NAME not in store

    def test_hold_yields_false_on_timeout(self, store, clock):
        seed_record(store, KEY, created_at_ms=clock.now)
        mutex = _mutex(store, clock)
        with mutex.hold(2000, 1000) as acquired:
            assert acquired is False
        assert store.read(NAME).revision == "seeded"


class TestLockHelpers:
    def test_release_lock_record(self, store, clock):
        seed_record(store, KEY, created_at_ms=clock.now)
        assert release_lock_record(store, KEY) is True
        assert release_lock_record(store, KEY) is False

    def test_describe_free_lock(self, store):
        assert describe_lock(store, KEY) == {"key": KEY, "name": NAME, "held": False}

    def test_describe_held_lock(self, store, clock):
        seed_record(store, KEY, created_at_ms=clock.now - 700_000)
        info = describe_lock(store, KEY, now=clock.now)

        assert info["held"] is True
        assert info["age_ms"] == 700_000
        assert info["expired"] is True
        assert info["holder"]["workflow_id"] == "other-run"


def test_threads_never_hold_the_lock_together():
    store = InMemoryRefStore()
    active = 0
    max_active = 0
    acquired_count = 0
    counter_lock = threading.Lock()
    barrier = threading.Barrier(4)

    def worker(index: int) -> None:
        nonlocal active, max_active, acquired_count
        mutex = GitMutex(store, "shared", metadata=make_metadata(f"run-{index}"))
        barrier.wait()
        for _ in range(3):
            assert mutex.acquire(timeout_ms=10_000, retry_interval_ms=1)
            with counter_lock:
                active += 1
                acquired_count += 1
                max_active = max(max_active, active)
            time.sleep(0.002)
            with counter_lock:
                active -= 1
            mutex.release()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert max_active == 1
    assert acquired_count == 12
    assert record_name_for("shared") not in store
