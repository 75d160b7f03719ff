"""Reference store implementations backing the mutex.

A store exposes exactly three operations over a flat namespace of record
names: atomic create-if-absent, delete, and read. Atomicity of create is the
only cross-process synchronization the mutex relies on.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from pick_runner.core.exceptions import APIError, LockConflictError, LockRecordNotFoundError
from pick_runner.core.locks.records import HolderMetadata, LockRecord, now_ms, parse_timestamp_ms

if TYPE_CHECKING:
    from pick_runner.api.github import GitHubClient

LOCK_COMMIT_TITLE = "pick-runner lock"


class RefStore(Protocol):
    """Backend abstraction for lock record storage."""

    name: str

    def create_atomic(self, name: str, metadata: HolderMetadata) -> LockRecord:
        """Create the record, raising LockConflictError if it already exists."""

    def delete(self, name: str) -> None:
        """Delete the record, raising LockRecordNotFoundError if it is absent."""

    def read(self, name: str) -> LockRecord:
        """Read the record with its store-assigned creation time."""


class InMemoryRefStore:
    """Process-local store with the same atomicity contract as the Git backend.

    Creation timestamps come from the store's own clock, never from the
    holder metadata, mirroring how GitHub stamps commits server-side.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], int] | None = None):
        self._clock = clock or now_ms
        self._records: dict[str, LockRecord] = {}
        self._lock = threading.Lock()

    def create_atomic(self, name: str, metadata: HolderMetadata) -> LockRecord:
        with self._lock:
            if name in self._records:
                raise LockConflictError(name)
            record = LockRecord(
                name=name,
                revision=uuid.uuid4().hex,
                created_at_ms=int(self._clock()),
                holder=metadata,
            )
            self._records[name] = record
            return record

    def delete(self, name: str) -> None:
        with self._lock:
            if self._records.pop(name, None) is None:
                raise LockRecordNotFoundError(name)

    def read(self, name: str) -> LockRecord:
        with self._lock:
            record = self._records.get(name)
        if record is None:
            raise LockRecordNotFoundError(name)
        return record

    def put(self, record: LockRecord) -> None:
        """Seed a record directly, e.g. to simulate a crashed holder."""
        with self._lock:
            self._records[record.name] = record

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records


def _commit_timestamp_ms(commit: dict[str, Any]) -> int:
    for role in ("committer", "author"):
        signature = commit.get(role) or {}
        date = signature.get("date")
        if date:
            return parse_timestamp_ms(date)
    raise APIError("Commit carries no timestamp", operation="read lock record", details=str(commit.get("sha")))


def encode_lock_message(name: str, metadata: HolderMetadata) -> str:
    return f"{LOCK_COMMIT_TITLE} {name}\n\n{metadata.to_json()}\n"


def decode_lock_message(message: str | None) -> HolderMetadata | None:
    if not message:
        return None
    _, _, body = message.partition("\n\n")
    return HolderMetadata.from_json(body.strip()) if body else None


class GitRefStore:
    """Lock records as Git references in a GitHub repository.

    Each record is a ref ``refs/<name>`` pointing at a parentless commit
    created for that lock. GitHub assigns the commit date, which makes the
    record's creation time independent of any client clock. The commit
    message carries the holder metadata as JSON.
    """

    name = "git-ref"

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        *,
        base_sha: str | None = None,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.owner = owner
        self.repo = repo
        self.base_sha = base_sha
        self.logger = logger or logging.getLogger(__name__)
        self._tree_sha: str | None = None

    def _lock_tree(self) -> str:
        if self._tree_sha is None:
            base = self.base_sha or self.client.get_head_commit_sha(self.owner, self.repo)
            commit = self.client.get_commit(self.owner, self.repo, base)
            self._tree_sha = commit["tree"]["sha"]
        return self._tree_sha

    def _ref_exists(self, name: str) -> bool:
        try:
            self.client.get_ref(self.owner, self.repo, name)
        except APIError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def create_atomic(self, name: str, metadata: HolderMetadata) -> LockRecord:
        # Skip the commit write while the ref is held; create_ref still decides races
        if self._ref_exists(name):
            raise LockConflictError(name, details="Reference already exists")
        commit = self.client.create_commit(
            self.owner,
            self.repo,
            message=encode_lock_message(name, metadata),
            tree=self._lock_tree(),
            parents=[],
        )
        try:
            self.client.create_ref(self.owner, self.repo, f"refs/{name}", commit["sha"])
        except APIError as e:
            if e.status_code == 422 and "already exists" in str(e).lower():
                raise LockConflictError(name, details=e.details) from e
            raise
        return LockRecord(
            name=name,
            revision=commit["sha"],
            created_at_ms=_commit_timestamp_ms(commit),
            holder=metadata,
        )

    def delete(self, name: str) -> None:
        try:
            self.client.delete_ref(self.owner, self.repo, name)
        except APIError as e:
            # GitHub answers 422 "Reference does not exist" for missing refs
            if e.status_code in (404, 422):
                raise LockRecordNotFoundError(name, details=e.details) from e
            raise

    def read(self, name: str) -> LockRecord:
        try:
            ref = self.client.get_ref(self.owner, self.repo, name)
            sha = ref["object"]["sha"]
            commit = self.client.get_commit(self.owner, self.repo, sha)
        except APIError as e:
            if e.status_code == 404:
                raise LockRecordNotFoundError(name, details=e.details) from e
            raise
        return LockRecord(
            name=name,
            revision=sha,
            created_at_ms=_commit_timestamp_ms(commit),
            holder=decode_lock_message(commit.get("message")),
        )
