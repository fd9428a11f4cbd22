"""Git executor: file writes, staging and commits inside a mission worktree."""

from __future__ import annotations

import difflib
import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from missionforge.core.errors import ValidationError
from missionforge.core.models import Commit, FileDiff, FileSpec, NoChanges
from missionforge.utils.git import DEFAULT_TIMEOUT, dedupe, run_git, split_lines

logger = logging.getLogger(__name__)


def resolve_in_worktree(worktree_path: Path, relative: str) -> Path:
    """Resolve a repo-relative path, refusing anything outside the worktree."""
    if not relative:
        raise ValidationError("File path is required")
    candidate = Path(relative)
    if candidate.is_absolute():
        raise ValidationError(f"File path must be relative to the worktree: {relative}")
    root = worktree_path.resolve()
    full = (root / candidate).resolve()
    if not full.is_relative_to(root):
        raise ValidationError(f"File path escapes the worktree: {relative}")
    return full


def build_file_diff(path: str, old_content: str, new_content: str) -> FileDiff:
    """Count added and removed lines between two versions of a file."""
    additions = 0
    deletions = 0
    diff = difflib.unified_diff(old_content.splitlines(), new_content.splitlines(), lineterm="", n=0)
    for line in diff:
        if line.startswith(("+++", "---")):
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return FileDiff(
        path=path,
        old_content=old_content,
        new_content=new_content,
        additions=additions,
        deletions=deletions,
    )


class GitExecutor:
    """Runs git subcommands scoped to one worktree and returns typed results."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def write_files(self, worktree_path: Path, files: Sequence[FileSpec]) -> list[str]:
        """Write files into the worktree, creating parent directories.

        Existing files are overwritten. Writes are not rolled back if a later
        file fails; files already on disk stay.

        Returns:
            Paths written, in input order
        """
        written: list[str] = []
        for spec in files:
            full_path = resolve_in_worktree(worktree_path, spec.path)
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(spec.content, encoding="utf-8")
            written.append(spec.path)
        logger.debug(f"Wrote {len(written)} file(s) into {worktree_path}")
        return written

    def snapshot(self, worktree_path: Path, paths: Sequence[str]) -> dict[str, str]:
        """Current on-disk content per path ("" for files that do not exist yet)."""
        contents: dict[str, str] = {}
        for path in paths:
            full_path = resolve_in_worktree(worktree_path, path)
            contents[path] = full_path.read_text(encoding="utf-8") if full_path.is_file() else ""
        return contents

    async def stage_and_commit(
        self,
        worktree_path: Path,
        message: str,
        files: Sequence[str] | None = None,
    ) -> Commit | NoChanges:
        """Stage changes and commit them.

        Args:
            worktree_path: Worktree to commit in
            message: Commit message
            files: Paths to stage and commit; entries already staged for
                other paths stay in the index. None or empty commits everything
                pending

        Returns:
            The new Commit, or NoChanges when nothing ended up staged

        Raises:
            ValidationError: If message is empty
            GitCommandError: If any git step fails
        """
        if not message or not message.strip():
            raise ValidationError("Commit message is required")

        if files:
            await self._git(worktree_path, "add", "--", *files)
            pathspec = ["--", *files]
        else:
            await self._git(worktree_path, "add", "-A")
            pathspec = []

        # index entries staged outside this call stay out of the commit
        staged = await self._git(worktree_path, "diff", "--cached", "--name-only", *pathspec)
        if not split_lines(staged):
            logger.debug(f"Nothing staged in {worktree_path}, skipping commit")
            return NoChanges(message=message)

        await self._git(worktree_path, "commit", "-m", message, *pathspec)
        sha = (await self._git(worktree_path, "rev-parse", "HEAD")).strip()
        changed = await self._git(worktree_path, "diff-tree", "--no-commit-id", "--name-only", "-r", "--root", sha)

        commit = Commit(
            sha=sha,
            message=message,
            files_changed=tuple(dedupe(split_lines(changed))),
            timestamp=datetime.now(),
        )
        logger.info(f"Committed {sha[:8]} in {worktree_path}: {message}")
        return commit

    async def _git(self, worktree_path: Path, *args: str) -> str:
        result = await run_git(list(args), worktree_path, timeout=self.timeout)
        return result.stdout
