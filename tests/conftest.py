"""Shared fixtures: throwaway git repositories and a controller wired to them."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from missionforge.config import Config
from missionforge.core.executor import GitExecutor
from missionforge.core.lifecycle import MissionLifecycleController
from missionforge.core.models import MergeOutcome, PullRequest, PushResult
from missionforge.core.state import InMemoryMissionRepository
from missionforge.core.worktrees import WorktreeStore
from missionforge.sync.github_client import RemoteCredentials
from missionforge.sync.remote import RemoteSyncClient


def git(cwd: Path, *args: str) -> str:
    """Run git synchronously for test setup and assertions."""
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout


@pytest.fixture
def git_cli():
    """Synchronous git runner, for setup and assertions inside tests."""
    return git


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    return tmp_path / "state" / "missions.db"


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository on `main` with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git binary not available")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# project\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "initial commit")
    return repo


@pytest.fixture
def worktree_base(tmp_path: Path) -> Path:
    return tmp_path / "worktrees"


@pytest.fixture
def store(git_repo: Path, worktree_base: Path) -> WorktreeStore:
    return WorktreeStore(repo_root=git_repo, worktree_base=worktree_base)


@pytest.fixture
def executor() -> GitExecutor:
    return GitExecutor()


@pytest.fixture
def remote() -> MagicMock:
    """Remote sync client that succeeds unless a test says otherwise."""
    client = MagicMock(spec=RemoteSyncClient)
    client.push = AsyncMock(return_value=PushResult(repo="owner/repo", branch="feature/auth"))
    client.open_pull_request = AsyncMock(
        return_value=PullRequest(url="https://github.com/owner/repo/pull/7", number=7)
    )
    client.merge_pull_request = AsyncMock(return_value=MergeOutcome(merged=True, sha="f" * 40, message="merged"))
    client.get_pull_request = AsyncMock(
        return_value=PullRequest(url="https://github.com/owner/repo/pull/7", number=7, state="open")
    )
    return client


@pytest.fixture
def credentials() -> RemoteCredentials:
    return RemoteCredentials(token="ghp_secret", owner="owner", repo="repo")


@pytest.fixture
def repository() -> InMemoryMissionRepository:
    return InMemoryMissionRepository()


@pytest.fixture
def controller(
    repository: InMemoryMissionRepository,
    store: WorktreeStore,
    executor: GitExecutor,
    remote: MagicMock,
) -> MissionLifecycleController:
    return MissionLifecycleController(repository, store, executor, remote, Config())
