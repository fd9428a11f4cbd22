"""Remote sync: push mission branches and drive pull requests on GitHub."""

from __future__ import annotations

import logging
from pathlib import Path

from missionforge.core.errors import GitCommandError, RemoteSyncError, ValidationError
from missionforge.core.models import MergeMethod, MergeOutcome, PullRequest, PushResult
from missionforge.sync.github_client import GITHUB_API_BASE, DEFAULT_TIMEOUT, GitHubClient, RemoteCredentials
from missionforge.utils.git import run_git

logger = logging.getLogger(__name__)

DEFAULT_PUSH_TIMEOUT = 120.0


class RemoteSyncClient:
    """Push / open-PR / merge-PR against a hosting API with caller-supplied credentials."""

    def __init__(
        self,
        api_url: str = GITHUB_API_BASE,
        host: str = "github.com",
        timeout: float = DEFAULT_TIMEOUT,
        push_timeout: float = DEFAULT_PUSH_TIMEOUT,
    ) -> None:
        self.api_url = api_url
        self.host = host
        self.timeout = timeout
        self.push_timeout = push_timeout

    def remote_url(self, credentials: RemoteCredentials) -> str:
        return f"https://{credentials.token}@{self.host}/{credentials.owner}/{credentials.repo}.git"

    def _client(self, credentials: RemoteCredentials) -> GitHubClient:
        return GitHubClient(credentials, api_url=self.api_url, timeout=self.timeout)

    async def push(self, worktree_path: Path, branch_name: str, credentials: RemoteCredentials) -> PushResult:
        """Point origin at the token-bearing URL and push the branch with upstream tracking.

        Raises:
            ValidationError: If branch_name is empty
            RemoteSyncError: If configuring the remote or pushing fails
        """
        if not branch_name:
            raise ValidationError("branch_name is required to push")

        url = self.remote_url(credentials)
        try:
            try:
                await run_git(["remote", "set-url", "origin", url], worktree_path)
            except GitCommandError:
                await run_git(["remote", "add", "origin", url], worktree_path)
            await run_git(["push", "-u", "origin", branch_name], worktree_path, timeout=self.push_timeout)
        except GitCommandError as e:
            args = [credentials.redact(arg) for arg in e.git_args]
            stderr = credentials.redact(e.stderr)
            logger.warning(f"Push of {branch_name} to {credentials.slug} failed: {stderr.strip()}")
            raise RemoteSyncError(args, e.returncode, stderr, timed_out=e.timed_out) from None

        logger.info(f"Pushed {branch_name} to {credentials.slug}")
        return PushResult(repo=credentials.slug, branch=branch_name)

    async def open_pull_request(
        self,
        title: str,
        body: str,
        head_branch: str,
        base_branch: str,
        credentials: RemoteCredentials,
    ) -> PullRequest:
        """Open a pull request from head_branch into base_branch."""
        if not title:
            raise ValidationError("Pull request title is required")
        if not head_branch or not base_branch:
            raise ValidationError("Head and base branches are required")

        async with self._client(credentials) as client:
            return await client.create_pull_request(title=title, head=head_branch, base=base_branch, body=body or "")

    async def merge_pull_request(
        self,
        number: int,
        merge_method: MergeMethod,
        credentials: RemoteCredentials,
    ) -> MergeOutcome:
        """Merge a pull request. merged=False comes back as a result, not an exception."""
        async with self._client(credentials) as client:
            outcome = await client.merge_pull_request(number, MergeMethod(merge_method))
        if outcome.merged:
            logger.info(f"Merged pull request #{number} on {credentials.slug} ({outcome.sha})")
        else:
            logger.warning(f"Pull request #{number} on {credentials.slug} was not merged: {outcome.message}")
        return outcome

    async def get_pull_request(self, number: int, credentials: RemoteCredentials) -> PullRequest:
        async with self._client(credentials) as client:
            return await client.get_pull_request(number)
