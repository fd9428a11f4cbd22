"""GitHub API client using httpx for pull request operations.

Each call is issued exactly once. Non-2xx answers are raised as RemoteApiError
subclasses that keep the status code and response body verbatim; retry policy
belongs to the caller.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from missionforge.core.errors import (
    GitHubAuthError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    RemoteApiError,
    ValidationError,
)
from missionforge.core.models import MergeMethod, MergeOutcome, PullRequest

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
TOKEN_ENV = "GITHUB_TOKEN"


@dataclass(frozen=True)
class RemoteCredentials:
    """Access token plus {owner, repo} coordinate for the hosting API."""

    token: str
    owner: str
    repo: str

    def __post_init__(self) -> None:
        if not self.token:
            raise ValidationError(f"No GitHub token provided. Set {TOKEN_ENV} environment variable or pass a token.")
        if not self.owner or not self.repo:
            raise ValidationError("Repository owner and name are required")

    @classmethod
    def from_slug(cls, slug: str | None, token: str | None = None) -> RemoteCredentials:
        """Build credentials from 'owner/repo', reading the token from GITHUB_TOKEN if not given."""
        if not slug:
            raise ValidationError("Repository is required in 'owner/repo' format")
        owner, _, repo = slug.strip().partition("/")
        if not owner or not repo or "/" in repo:
            raise ValidationError(f"Invalid repository '{slug}', expected 'owner/repo'")
        return cls(token=token or os.getenv(TOKEN_ENV) or "", owner=owner, repo=repo)

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    def redact(self, text: str) -> str:
        """Strip the token from text that may echo a remote URL."""
        return text.replace(self.token, "***")

    def __repr__(self) -> str:
        return f"RemoteCredentials(owner={self.owner!r}, repo={self.repo!r}, token='***')"


class GitHubClient:
    """Async GitHub API client for pull request creation and merging."""

    def __init__(
        self,
        credentials: RemoteCredentials,
        api_url: str = GITHUB_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            credentials: Token and repository coordinate.
            api_url: REST API base URL (GitHub Enterprise hosts differ).
            timeout: Request timeout in seconds.
        """
        self.credentials = credentials
        self.api_url = api_url
        self.timeout = timeout

        # Build headers - never log the token!
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {credentials.token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        self._client: httpx.AsyncClient | None = None

    @property
    def repo(self) -> str:
        return self.credentials.slug

    async def __aenter__(self) -> GitHubClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._headers,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError("GitHubClient must be used as async context manager")
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a single HTTP request.

        Args:
            method: HTTP method (GET, POST, PUT, etc.).
            endpoint: API endpoint (e.g., "/repos/owner/repo/pulls").
            **kwargs: Additional arguments passed to httpx request.

        Returns:
            httpx.Response object for any 2xx answer.

        Raises:
            GitHubAuthError: On 401.
            GitHubRateLimitError: On 403/429 with the rate limit exhausted.
            GitHubNotFoundError: On 404.
            RemoteApiError: For any other non-2xx answer or transport failure.
        """
        try:
            response = await self.client.request(method, endpoint, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteApiError(f"HTTP error calling {method} {endpoint}: {e}") from e

        status = response.status_code
        if 200 <= status < 300:
            return response

        body = response.text
        logger.error(f"GitHub API error {status} on {method} {endpoint}: {body[:200]}")

        if status == 401:
            raise GitHubAuthError(f"GitHub authentication failed ({status}): {body}", status_code=status, body=body)

        if status in (403, 429) and response.headers.get("X-RateLimit-Remaining") == "0":
            reset_at = int(response.headers.get("X-RateLimit-Reset", "0"))
            raise GitHubRateLimitError(
                f"GitHub API rate limit exceeded ({status}). Resets at {reset_at}",
                status_code=status,
                body=body,
                reset_at=reset_at,
            )

        if status == 404:
            raise GitHubNotFoundError(f"Resource not found: {endpoint}", status_code=status, body=body)

        raise RemoteApiError(f"GitHub API error {status}: {body}", status_code=status, body=body)

    # =========================================================================
    # Pull Request Operations
    # =========================================================================

    async def create_pull_request(
        self,
        title: str,
        head: str,
        base: str,
        body: str = "",
    ) -> PullRequest:
        """Open a pull request.

        Args:
            title: Pull request title.
            head: Branch with the changes.
            base: Branch to merge into.
            body: Pull request description.

        Returns:
            PullRequest with html url and number.
        """
        endpoint = f"/repos/{self.repo}/pulls"
        response = await self._request(
            "POST",
            endpoint,
            json={"title": title, "body": body, "head": head, "base": base},
        )
        data = response.json()
        logger.info(f"Opened pull request #{data['number']} on {self.repo}: {head} -> {base}")
        return PullRequest(url=data["html_url"], number=data["number"], state=data.get("state", "open"))

    async def merge_pull_request(self, number: int, merge_method: MergeMethod) -> MergeOutcome:
        """Merge a pull request.

        A response with merged=False is returned as is; callers inspect the flag.
        """
        endpoint = f"/repos/{self.repo}/pulls/{number}/merge"
        response = await self._request(
            "PUT",
            endpoint,
            json={"merge_method": merge_method.value},
        )
        data = response.json()
        return MergeOutcome(
            merged=bool(data.get("merged", False)),
            sha=data.get("sha"),
            message=data.get("message", ""),
        )

    async def get_pull_request(self, number: int) -> PullRequest:
        """Get a pull request by number."""
        endpoint = f"/repos/{self.repo}/pulls/{number}"
        response = await self._request("GET", endpoint)
        data = response.json()
        return PullRequest(
            url=data["html_url"],
            number=data["number"],
            state=data.get("state", "open"),
            merged=bool(data.get("merged", False)),
        )
