"""Tests for git utility functions."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from missionforge.core.errors import GitCommandError
from missionforge.utils.git import (
    dedupe,
    find_worktree_branch,
    parse_count,
    parse_git_status_output,
    parse_worktree_list,
    run_git,
    split_lines,
)


class TestParseGitStatusOutput:
    """Tests for parse_git_status_output function."""

    def test_empty_output_returns_clean(self) -> None:
        """Empty output indicates clean working directory."""
        result = parse_git_status_output("")
        assert result.untracked == []
        assert result.modified == []
        assert result.is_clean is True
        assert result.has_changes is False

    def test_only_whitespace_returns_clean(self) -> None:
        result = parse_git_status_output("  \n\n  ")
        assert result.is_clean is True
        assert result.has_changes is False

    def test_untracked_files_only(self) -> None:
        """Untracked files don't make the tree dirty but do count as changes."""
        output = "?? notes/test.md\n?? temp.txt\n"
        result = parse_git_status_output(output)
        assert result.untracked == ["notes/test.md", "temp.txt"]
        assert result.modified == []
        assert result.is_clean is True
        assert result.has_changes is True

    def test_staged_and_unstaged_are_modified(self) -> None:
        output = " M src/main.py\nM  docs/README.md\nA  src/new.py\n D old.py"
        result = parse_git_status_output(output)
        assert result.modified == ["src/main.py", "docs/README.md", "src/new.py", "old.py"]
        assert result.is_clean is False

    def test_rename_reports_new_path(self) -> None:
        result = parse_git_status_output("R  old_name.py -> new_name.py")
        assert result.modified == ["new_name.py"]


class TestParseWorktreeList:
    """Tests for porcelain worktree listing."""

    OUTPUT = """\
worktree /repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /worktrees/m1
HEAD 2222222222222222222222222222222222222222
branch refs/heads/mission/user-auth

worktree /worktrees/m2
HEAD 3333333333333333333333333333333333333333
detached
"""

    def test_parses_all_records(self) -> None:
        entries = parse_worktree_list(self.OUTPUT)
        assert [e.path for e in entries] == [Path("/repo"), Path("/worktrees/m1"), Path("/worktrees/m2")]
        assert entries[0].branch == "main"
        assert entries[1].branch == "mission/user-auth"
        assert entries[1].head == "2" * 40

    def test_detached_entry_has_no_branch(self) -> None:
        entry = parse_worktree_list(self.OUTPUT)[2]
        assert entry.detached is True
        assert entry.branch is None

    def test_empty_output(self) -> None:
        assert parse_worktree_list("") == []

    def test_find_worktree_branch(self) -> None:
        assert find_worktree_branch(self.OUTPUT, Path("/worktrees/m1")) == "mission/user-auth"

    def test_find_worktree_branch_unknown_path(self) -> None:
        assert find_worktree_branch(self.OUTPUT, Path("/elsewhere")) is None


class TestSmallParsers:
    """Tests for line and count helpers."""

    def test_split_lines_drops_blanks(self) -> None:
        assert split_lines("a.txt\n\n  b.txt  \n") == ["a.txt", "b.txt"]

    def test_dedupe_keeps_first_seen_order(self) -> None:
        assert dedupe(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]

    def test_parse_count(self) -> None:
        assert parse_count("3\n") == 3

    def test_parse_count_garbage_is_zero(self) -> None:
        assert parse_count("fatal: nope") == 0


class TestRunGit:
    """Tests for the async git runner."""

    @pytest.mark.asyncio
    async def test_success_returns_output(self, git_repo: Path) -> None:
        result = await run_git(["branch", "--show-current"], cwd=git_repo)
        assert result.output == "main"

    @pytest.mark.asyncio
    async def test_failure_raises_with_stderr(self, git_repo: Path) -> None:
        with pytest.raises(GitCommandError) as exc_info:
            await run_git(["rev-parse", "--verify", "no-such-ref"], cwd=git_repo)

        assert exc_info.value.returncode != 0
        assert exc_info.value.git_args == ["rev-parse", "--verify", "no-such-ref"]
        assert exc_info.value.timed_out is False

    @pytest.mark.asyncio
    async def test_missing_binary_raises_git_error(self, tmp_path: Path) -> None:
        with (
            patch(
                "missionforge.utils.git.asyncio.create_subprocess_exec",
                new=AsyncMock(side_effect=FileNotFoundError("git")),
            ),
            pytest.raises(GitCommandError, match="Unable to run git"),
        ):
            await run_git(["status"], cwd=tmp_path)

    @pytest.mark.asyncio
    async def test_timeout_terminates_process(self, tmp_path: Path) -> None:
        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        process = MagicMock()
        process.communicate = hang
        process.wait = AsyncMock(return_value=0)

        with (
            patch(
                "missionforge.utils.git.asyncio.create_subprocess_exec",
                new=AsyncMock(return_value=process),
            ),
            pytest.raises(GitCommandError) as exc_info,
        ):
            await run_git(["fetch"], cwd=tmp_path, timeout=0.05)

        assert exc_info.value.timed_out is True
        process.terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_runs_git_with_untranslated_messages(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LANGUAGE", "de")
        process = MagicMock()
        process.communicate = AsyncMock(return_value=(b"", b""))
        process.returncode = 0
        spawn = AsyncMock(return_value=process)

        with patch("missionforge.utils.git.asyncio.create_subprocess_exec", new=spawn):
            await run_git(["status"], cwd=tmp_path)

        env = spawn.call_args.kwargs["env"]
        assert env["LC_ALL"] == "C"
        assert env["LANGUAGE"] == "de"
