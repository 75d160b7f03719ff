"""Pytest configuration and fixtures for pick-runner tests"""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

import pytest

from pick_runner.core.locks import HolderMetadata, InMemoryRefStore, LockRecord, record_name_for

_ENV_PREFIXES = ("INPUT_", "PICK_RUNNER_", "GITHUB_")
_ENV_NAMES = ("LOG_LEVEL", "MAX_RETRIES", "RETRY_BASE_DELAY", "RETRY_MAX_DELAY")


class FakeClock:
    """Millisecond clock whose ``sleep`` advances time and fires scheduled callbacks."""

    def __init__(self, start_ms: int = 0):
        self.now = start_ms
        self.sleeps: list[float] = []
        self._scheduled: list[tuple[int, Callable[[], Any]]] = []

    def __call__(self) -> int:
        return self.now

    def at(self, when_ms: int, callback: Callable[[], Any]) -> None:
        self._scheduled.append((when_ms, callback))
        self._scheduled.sort(key=lambda item: item[0])

    def advance(self, ms: int) -> None:
        target = self.now + ms
        while self._scheduled and self._scheduled[0][0] <= target:
            when, callback = self._scheduled.pop(0)
            self.now = max(self.now, when)
            callback()
        self.now = target

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(int(seconds * 1000))


class RecordingStore:
    """Wraps a store, counting calls and optionally failing chosen operations."""

    def __init__(self, inner: InMemoryRefStore):
        self.inner = inner
        self.name = inner.name
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}

    def _call(self, op: str, *args: Any) -> Any:
        self.calls.append(op)
        if op in self.failures:
            raise self.failures[op]
        return getattr(self.inner, op)(*args)

    def create_atomic(self, name: str, metadata: HolderMetadata) -> LockRecord:
        return self._call("create_atomic", name, metadata)

    def delete(self, name: str) -> None:
        return self._call("delete", name)

    def read(self, name: str) -> LockRecord:
        return self._call("read", name)

    def count(self, op: str) -> int:
        return self.calls.count(op)


def make_metadata(workflow_id: str = "run-1", job_id: str = "build", created_at_ms: int = 0) -> HolderMetadata:
    return HolderMetadata(workflow_id=workflow_id, job_id=job_id, created_at_ms=created_at_ms, content_sha="abc123")


def seed_record(store: InMemoryRefStore, key: str, created_at_ms: int, revision: str = "seeded") -> LockRecord:
    """Place a record directly in the store, as left by another holder."""
    record = LockRecord(
        name=record_name_for(key),
        revision=revision,
        created_at_ms=created_at_ms,
        holder=make_metadata("other-run", "other-job", created_at_ms),
    )
    store.put(record)
    return record


def make_response(status_code: int = 200, payload: Any = None, text: str = "") -> Mock:
    response = Mock()
    response.status_code = status_code
    if payload is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = payload
    response.text = text
    return response


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove Actions and pick-runner variables so tests do not see the host's."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def clock():
    return FakeClock(start_ms=1_700_000_000_000)


@pytest.fixture
def store(clock):
    return InMemoryRefStore(clock=clock)


@pytest.fixture
def recording_store(store):
    return RecordingStore(store)


@pytest.fixture
def metadata():
    return make_metadata()


@pytest.fixture
def mock_session():
    """A requests.Session stand-in; set ``request.side_effect`` to a list of responses."""
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def no_retry_sleep(monkeypatch):
    """Make API retries immediate."""
    sleeps: list[float] = []
    monkeypatch.setattr("pick_runner.api.resilience.time.sleep", sleeps.append)
    return sleeps
