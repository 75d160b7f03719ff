"""GitHub REST API client for pick-runner."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import requests

from pick_runner.api.resilience import make_api_call_with_retry
from pick_runner.core.constants import (
    DEFAULT_API_URL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_INCLUDED_MINUTES,
    ENV_API_URL,
    GITHUB_API_VERSION,
    RETRYABLE_STATUS_CODES,
    RUNNERS_PAGE_SIZE,
)
from pick_runner.core.exceptions import APIError, RetryableHTTPError
from pick_runner.core.version import __version__


@dataclass
class BillingInfo:
    """GitHub Actions minutes usage in the legacy billing shape."""

    total_minutes_used: float = 0
    included_minutes: float = DEFAULT_INCLUDED_MINUTES
    minutes_used_breakdown: dict[str, Any] = field(default_factory=dict)

    @property
    def remaining_minutes(self) -> float:
        return self.included_minutes - self.total_minutes_used

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BillingInfo:
        return cls(
            total_minutes_used=data.get("total_minutes_used") or 0,
            included_minutes=data.get("included_minutes", DEFAULT_INCLUDED_MINUTES),
            minutes_used_breakdown=dict(data.get("minutes_used_breakdown") or {}),
        )

    @classmethod
    def from_usage_report(cls, data: dict[str, Any]) -> BillingInfo:
        """Convert an enhanced billing usage report to the legacy shape."""
        items = data.get("usageItems") or data.get("usage_items") or []
        total = sum(
            item.get("quantity") or 0 for item in items if str(item.get("product", "")).lower() == "actions"
        )
        return cls(
            total_minutes_used=total,
            included_minutes=DEFAULT_INCLUDED_MINUTES,
            minutes_used_breakdown={"total": total},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_minutes_used": self.total_minutes_used,
            "included_minutes": self.included_minutes,
            "minutes_used_breakdown": self.minutes_used_breakdown,
        }


def _ref_path(ref: str) -> str:
    return quote(ref, safe="/")


class GitHubClient:
    """Thin GitHub REST client over a ``requests.Session``.

    Read-only lookups retry transient failures with backoff. Git data
    mutations (commits, refs) are single attempts whose errors surface
    as ``APIError`` for the caller to classify.
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        logger: logging.Logger | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
                "User-Agent": f"pick-runner/{__version__}",
            }
        )

    @classmethod
    def from_environment(cls, token: str, **kwargs: Any) -> GitHubClient:
        """Build a client honoring ``GITHUB_API_URL`` (GitHub Enterprise Server)."""
        kwargs.setdefault("api_url", os.environ.get(ENV_API_URL) or DEFAULT_API_URL)
        return cls(token, **kwargs)

    # ==================== TRANSPORT ====================

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> requests.Response:
        response = self.session.request(
            method,
            f"{self.api_url}{path}",
            params=params,
            json=json_body,
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise self._error_from_response(response, operation)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response, operation: str) -> APIError:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        server_message = payload.get("message") if isinstance(payload, dict) else None
        return APIError(
            "GitHub API request failed",
            status_code=response.status_code,
            operation=operation,
            details=server_message or (response.text or "").strip()[:200] or None,
        )

    def _get_json(self, path: str, *, operation: str, params: dict[str, Any] | None = None) -> Any:
        def _attempt() -> Any:
            try:
                return self._request("GET", path, operation=operation, params=params).json()
            except APIError as e:
                if e.status_code in RETRYABLE_STATUS_CODES:
                    raise RetryableHTTPError(e.status_code, e.details or "") from e
                raise

        try:
            return make_api_call_with_retry(_attempt, logger=self.logger, operation_name=operation)
        except RetryableHTTPError as e:
            raise APIError(
                "GitHub API request failed",
                status_code=e.status_code,
                operation=operation,
                original_error=e,
            ) from e

    # ==================== ORGANIZATIONS & RUNNERS ====================

    def is_organization(self, owner: str) -> bool:
        """True if ``owner`` is an organization, False for a user account."""
        try:
            self._get_json(f"/orgs/{quote(owner)}", operation="get organization")
        except APIError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def list_self_hosted_runners(
        self, owner: str, repo: str | None = None, is_org: bool = True
    ) -> list[dict[str, Any]]:
        """List self-hosted runners for an organization, or for a user's repository."""
        if is_org:
            path = f"/orgs/{quote(owner)}/actions/runners"
        else:
            if not repo:
                raise ValueError("repo is required to list runners for a user account")
            path = f"/repos/{quote(owner)}/{quote(repo)}/actions/runners"

        runners: list[dict[str, Any]] = []
        page = 1
        try:
            while True:
                data = self._get_json(
                    path,
                    operation="list self-hosted runners",
                    params={"per_page": RUNNERS_PAGE_SIZE, "page": page},
                )
                batch = data.get("runners") or []
                runners.extend(batch)
                total = data.get("total_count", len(runners))
                if not batch or len(runners) >= total:
                    break
                page += 1
        except APIError as e:
            if e.status_code == 403 and "resource not accessible" in str(e).lower():
                self.logger.info("No self-hosted runners configured for this repository/organization")
                return []
            raise
        return runners

    # ==================== BILLING ====================

    def get_billing_info(self, owner: str, is_org: bool = True) -> BillingInfo:
        """Actions minutes usage, trying the legacy endpoint before the usage report."""
        if is_org:
            legacy_path = f"/orgs/{quote(owner)}/settings/billing/actions"
            usage_path = f"/organizations/{quote(owner)}/settings/billing/usage"
        else:
            legacy_path = f"/users/{quote(owner)}/settings/billing/actions"
            usage_path = f"/users/{quote(owner)}/settings/billing/usage"

        try:
            return BillingInfo.from_dict(self._get_json(legacy_path, operation="get Actions billing"))
        except APIError as legacy_error:
            self.logger.debug(f"Legacy billing API unavailable ({legacy_error}); trying usage report")

        today = datetime.now(UTC)
        try:
            report = self._get_json(
                usage_path,
                operation="get billing usage",
                params={"year": today.year, "month": today.month},
            )
        except APIError as e:
            if e.status_code == 410 or "endpoint has been moved" in str(e).lower():
                self.logger.info("Billing API unavailable, using default values")
                return BillingInfo(minutes_used_breakdown={"total": 0})
            raise
        return BillingInfo.from_usage_report(report)

    # ==================== GIT DATA ====================

    def get_head_commit_sha(self, owner: str, repo: str) -> str:
        response = self._request("GET", f"/repos/{quote(owner)}/{quote(repo)}/commits/HEAD", operation="get HEAD")
        return response.json()["sha"]

    def get_commit(self, owner: str, repo: str, sha: str) -> dict[str, Any]:
        response = self._request(
            "GET", f"/repos/{quote(owner)}/{quote(repo)}/git/commits/{quote(sha)}", operation="get commit"
        )
        return response.json()

    def create_commit(self, owner: str, repo: str, *, message: str, tree: str, parents: list[str]) -> dict[str, Any]:
        response = self._request(
            "POST",
            f"/repos/{quote(owner)}/{quote(repo)}/git/commits",
            operation="create commit",
            json_body={"message": message, "tree": tree, "parents": parents},
        )
        return response.json()

    def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> dict[str, Any]:
        """Create ``ref`` (fully qualified, e.g. ``refs/mutex/key``). Fails with 422 if it exists."""
        response = self._request(
            "POST",
            f"/repos/{quote(owner)}/{quote(repo)}/git/refs",
            operation="create ref",
            json_body={"ref": ref, "sha": sha},
        )
        return response.json()

    def get_ref(self, owner: str, repo: str, ref: str) -> dict[str, Any]:
        """Read ``ref`` given without the ``refs/`` prefix, e.g. ``mutex/key``."""
        response = self._request(
            "GET", f"/repos/{quote(owner)}/{quote(repo)}/git/ref/{_ref_path(ref)}", operation="get ref"
        )
        return response.json()

    def delete_ref(self, owner: str, repo: str, ref: str) -> None:
        """Delete ``ref`` given without the ``refs/`` prefix, e.g. ``mutex/key``."""
        self._request(
            "DELETE", f"/repos/{quote(owner)}/{quote(repo)}/git/refs/{_ref_path(ref)}", operation="delete ref"
        )
