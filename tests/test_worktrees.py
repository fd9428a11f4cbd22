"""Tests for the per-mission worktree store."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from missionforge.core.errors import (
    GitCommandError,
    ValidationError,
    WorktreeExistsError,
    WorktreeNotFoundError,
)
from missionforge.core.worktrees import WorktreeStore
from missionforge.utils.git import run_git


class TestPathFor:
    """Tests for mission id to path mapping."""

    def test_path_is_under_base(self, tmp_path: Path) -> None:
        store = WorktreeStore(repo_root=tmp_path / "repo", worktree_base=tmp_path / "wt")
        assert store.path_for("m1") == (tmp_path / "wt" / "m1").absolute()

    @pytest.mark.parametrize("mission_id", ["", ".", "..", "a/b", "a\\b"])
    def test_rejects_ids_that_are_not_a_single_segment(self, tmp_path: Path, mission_id: str) -> None:
        store = WorktreeStore(repo_root=tmp_path, worktree_base=tmp_path / "wt")
        with pytest.raises(ValidationError):
            store.path_for(mission_id)

    def test_exists_reflects_filesystem(self, tmp_path: Path) -> None:
        store = WorktreeStore(repo_root=tmp_path, worktree_base=tmp_path / "wt")
        assert store.exists("m1") is False
        (tmp_path / "wt" / "m1").mkdir(parents=True)
        assert store.exists("m1") is True


class TestCreate:
    """Tests for WorktreeStore.create."""

    @pytest.mark.asyncio
    async def test_creates_branch_and_worktree(self, store: WorktreeStore, git_cli) -> None:
        path = await store.create("m1", "mission/user-auth", "main")

        assert path == store.path_for("m1")
        assert (path / "README.md").exists()
        assert git_cli(path, "branch", "--show-current").strip() == "mission/user-auth"

    @pytest.mark.asyncio
    async def test_existing_directory_is_rejected(self, store: WorktreeStore) -> None:
        await store.create("m1", "mission/one", "main")

        with pytest.raises(WorktreeExistsError):
            await store.create("m1", "mission/one", "main")

    @pytest.mark.asyncio
    async def test_reuses_existing_branch(self, store: WorktreeStore, git_repo: Path, git_cli) -> None:
        git_cli(git_repo, "branch", "feature/auth", "main")

        path = await store.create("m1", "feature/auth", "main")

        assert git_cli(path, "branch", "--show-current").strip() == "feature/auth"

    @pytest.mark.asyncio
    async def test_reuses_existing_branch_under_translated_locale(
        self, store: WorktreeStore, git_repo: Path, git_cli, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LANGUAGE", "de")
        monkeypatch.setenv("LANG", "C.UTF-8")
        git_cli(git_repo, "branch", "feature/auth", "main")

        path = await store.create("m1", "feature/auth", "main")

        assert git_cli(path, "branch", "--show-current").strip() == "feature/auth"

    @pytest.mark.asyncio
    async def test_unknown_base_leaves_nothing_behind(self, store: WorktreeStore) -> None:
        with pytest.raises(GitCommandError):
            await store.create("m1", "mission/one", "does-not-exist")

        assert store.exists("m1") is False

    @pytest.mark.asyncio
    async def test_requires_branch_names(self, store: WorktreeStore) -> None:
        with pytest.raises(ValidationError):
            await store.create("m1", "", "main")
        with pytest.raises(ValidationError):
            await store.create("m1", "mission/one", "")


class TestRemove:
    """Tests for WorktreeStore.remove."""

    @pytest.mark.asyncio
    async def test_removes_worktree_and_keeps_branch(self, store: WorktreeStore, git_repo: Path, git_cli) -> None:
        await store.create("m1", "mission/one", "main")

        result = await store.remove("m1")

        assert result.removed is True
        assert result.branch_deleted is False
        assert store.exists("m1") is False
        assert "mission/one" in git_cli(git_repo, "branch", "--list", "mission/one")

    @pytest.mark.asyncio
    async def test_delete_branch(self, store: WorktreeStore, git_repo: Path, git_cli) -> None:
        path = await store.create("m1", "mission/one", "main")
        (path / "dirty.txt").write_text("uncommitted\n")

        result = await store.remove("m1", delete_branch=True)

        assert result.removed is True
        assert result.branch == "mission/one"
        assert result.branch_deleted is True
        assert git_cli(git_repo, "branch", "--list", "mission/one").strip() == ""

    @pytest.mark.asyncio
    async def test_branch_delete_failure_is_reported(self, store: WorktreeStore) -> None:
        await store.create("m1", "mission/one", "main")

        async def failing_branch_delete(args, cwd, timeout=30.0):
            if args[:2] == ["branch", "-D"]:
                raise GitCommandError(args, 1, "error: branch is locked")
            return await run_git(args, cwd, timeout=timeout)

        with patch("missionforge.core.worktrees.run_git", side_effect=failing_branch_delete):
            result = await store.remove("m1", delete_branch=True)

        assert result.removed is True
        assert result.branch_deleted is False
        assert "branch is locked" in (result.error or "")

    @pytest.mark.asyncio
    async def test_missing_worktree_raises(self, store: WorktreeStore) -> None:
        with pytest.raises(WorktreeNotFoundError):
            await store.remove("never-created")


class TestStatus:
    """Tests for WorktreeStore.status."""

    @pytest.mark.asyncio
    async def test_missing_worktree_reports_not_exists(self, store: WorktreeStore) -> None:
        status = await store.status("m1")
        assert status.exists is False
        assert status.branch is None

    @pytest.mark.asyncio
    async def test_clean_worktree(self, store: WorktreeStore) -> None:
        await store.create("m1", "mission/one", "main")

        status = await store.status("m1", "main")

        assert status.exists is True
        assert status.branch == "mission/one"
        assert status.has_uncommitted_changes is False
        assert status.commits_ahead_of_base == 0

    @pytest.mark.asyncio
    async def test_untracked_file_and_commits_ahead(self, store: WorktreeStore, git_cli) -> None:
        path = await store.create("m1", "mission/one", "main")
        (path / "a.txt").write_text("a\n")
        git_cli(path, "add", "a.txt")
        git_cli(path, "commit", "-q", "-m", "add a")
        (path / "b.txt").write_text("b\n")

        status = await store.status("m1", "main")

        assert status.has_uncommitted_changes is True
        assert status.commits_ahead_of_base == 1

    @pytest.mark.asyncio
    async def test_unknown_base_counts_zero(self, store: WorktreeStore) -> None:
        await store.create("m1", "mission/one", "main")

        status = await store.status("m1", "no-such-base")

        assert status.exists is True
        assert status.commits_ahead_of_base == 0
