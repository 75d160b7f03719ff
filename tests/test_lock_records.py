"""Tests for lock keys, record metadata, and the expiry rule."""

from __future__ import annotations

import pytest

from conftest import make_metadata
from pick_runner.core.exceptions import ConfigurationError
from pick_runner.core.locks import HolderMetadata, LockRecord, is_expired, lock_age_ms, record_name_for
from pick_runner.core.locks.records import parse_timestamp_ms, validate_lock_key


def _record(created_at_ms: int) -> LockRecord:
    return LockRecord(name="mutex/k", revision="r1", created_at_ms=created_at_ms)


class TestLockKeys:
    @pytest.mark.parametrize("key", ["deploy-runner", "team/deploy", "gpu_pool.1"])
    def test_valid_keys(self, key):
        assert validate_lock_key(key) == key

    def test_key_is_stripped(self):
        assert validate_lock_key("  deploy  ") == "deploy"

    @pytest.mark.parametrize(
        "key",
        ["", "   ", "two words", "a..b", "ref@{1}", "/lead", "trail/", "a//b", "x.lock", "end.", "a:b", "q?", "t~1"],
    )
    def test_invalid_keys(self, key):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_lock_key(key)
        assert exc_info.value.field == "mutex-key"

    def test_record_name_uses_mutex_namespace(self):
        assert record_name_for("deploy-runner") == "mutex/deploy-runner"


class TestHolderMetadata:
    def test_json_round_trip(self):
        metadata = make_metadata(created_at_ms=1234)
        assert HolderMetadata.from_json(metadata.to_json()) == metadata

    @pytest.mark.parametrize("payload", ["not json", "[]", '{"workflow_id": "1"}', ""])
    def test_unreadable_payload_gives_none(self, payload):
        assert HolderMetadata.from_json(payload) is None

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("GITHUB_RUN_ID", "99")
        monkeypatch.setenv("GITHUB_JOB", "test")
        monkeypatch.setenv("GITHUB_SHA", "deadbeef")

        metadata = HolderMetadata.from_environment(created_at_ms=5)
        assert metadata == HolderMetadata("99", "test", 5, "deadbeef")

    def test_record_to_dict_without_holder(self):
        assert _record(10).to_dict() == {"name": "mutex/k", "revision": "r1", "created_at_ms": 10, "holder": None}


class TestExpiry:
    def test_age(self):
        assert lock_age_ms(_record(1_000), now=4_500) == 3_500

    def test_expired_strictly_after_ttl(self):
        record = _record(0)
        assert is_expired(record, ttl_ms=600_000, now=600_000) is False
        assert is_expired(record, ttl_ms=600_000, now=600_001) is True

    def test_default_ttl_is_ten_minutes(self):
        record = _record(0)
        assert is_expired(record, now=60_000) is False
        assert is_expired(record, now=700_000) is True

    def test_record_from_the_future_is_live(self):
        assert is_expired(_record(10_000), ttl_ms=1, now=0) is False


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1970-01-01T00:00:01Z", 1_000),
        ("2024-05-01T12:00:00Z", 1_714_564_800_000),
        ("2024-05-01T14:00:00+02:00", 1_714_564_800_000),
    ],
)
def test_parse_timestamp_ms(value, expected):
    assert parse_timestamp_ms(value) == expected
