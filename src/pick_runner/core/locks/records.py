"""Lock record data model.

Design principles:
- Existence of a record in the store is the lock; nothing else is persisted.
- Holder metadata is informational and must not be treated as lock truth.
- The creation timestamp used for expiry always comes from the store.
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pick_runner.core.constants import (
    ENV_JOB,
    ENV_RUN_ID,
    ENV_SHA,
    FORBIDDEN_REF_CHARACTERS,
    MUTEX_REF_PREFIX,
    UNKNOWN_VALUE,
)
from pick_runner.core.exceptions import ConfigurationError


class LockState(Enum):
    """Client-side states of a mutex handle."""

    UNACQUIRED = "unacquired"
    ACQUIRING = "acquiring"
    ACQUIRED = "acquired"
    RELEASING = "releasing"


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_timestamp_ms(value: str) -> int:
    """Parse an ISO-8601 timestamp (``2024-05-01T12:00:00Z``) to epoch ms."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def validate_lock_key(key: str) -> str:
    """Return the stripped key, or raise if it cannot name a Git ref."""
    candidate = (key or "").strip()
    if not candidate:
        raise ConfigurationError("Mutex key must not be empty", field="mutex-key")
    problems = []
    if any(ch.isspace() for ch in candidate):
        problems.append("contains whitespace")
    if ".." in candidate or "@{" in candidate:
        problems.append("contains '..' or '@{'")
    if candidate.startswith("/") or candidate.endswith("/") or "//" in candidate:
        problems.append("has an empty path component")
    if candidate.endswith(".lock") or candidate.endswith("."):
        problems.append("ends with '.lock' or '.'")
    bad_chars = sorted({ch for ch in candidate if ch in FORBIDDEN_REF_CHARACTERS or ord(ch) < 32})
    if bad_chars:
        problems.append(f"contains forbidden characters {''.join(bad_chars)!r}")
    if problems:
        raise ConfigurationError(
            f"Invalid mutex key '{candidate}'",
            field="mutex-key",
            details="; ".join(problems),
        )
    return candidate


def record_name_for(key: str) -> str:
    """Map a lock key to its record name in the store namespace."""
    return f"{MUTEX_REF_PREFIX}/{validate_lock_key(key)}"


@dataclass(frozen=True)
class HolderMetadata:
    """Who created a lock record. Diagnostic only."""

    workflow_id: str
    job_id: str
    created_at_ms: int
    content_sha: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HolderMetadata | None:
        try:
            return cls(
                workflow_id=str(data["workflow_id"]),
                job_id=str(data["job_id"]),
                created_at_ms=int(data["created_at_ms"]),
                content_sha=str(data.get("content_sha", UNKNOWN_VALUE)),
            )
        except (KeyError, TypeError, ValueError):
            return None

    @classmethod
    def from_json(cls, payload: str) -> HolderMetadata | None:
        try:
            data = json.loads(payload)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return cls.from_dict(data)

    @classmethod
    def from_environment(cls, created_at_ms: int | None = None) -> HolderMetadata:
        """Describe the current workflow run from the Actions environment."""
        return cls(
            workflow_id=os.environ.get(ENV_RUN_ID) or UNKNOWN_VALUE,
            job_id=os.environ.get(ENV_JOB) or UNKNOWN_VALUE,
            created_at_ms=now_ms() if created_at_ms is None else created_at_ms,
            content_sha=os.environ.get(ENV_SHA) or UNKNOWN_VALUE,
        )


@dataclass(frozen=True)
class LockRecord:
    """A lock record as observed in the store.

    Attributes:
        name: Record name (``mutex/<key>``)
        revision: Store identity of this incarnation of the record
        created_at_ms: Creation time assigned by the store
        holder: Decoded holder metadata, if the record carried any
    """

    name: str
    revision: str
    created_at_ms: int
    holder: HolderMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "revision": self.revision,
            "created_at_ms": self.created_at_ms,
            "holder": self.holder.to_dict() if self.holder else None,
        }
