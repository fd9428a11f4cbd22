"""Worktree store: one git worktree per mission under a shared base directory.

The filesystem is the source of truth. Nothing here caches whether a worktree
exists, because worktrees can be created or removed outside this process.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from missionforge.core.errors import (
    GitCommandError,
    ValidationError,
    WorktreeExistsError,
    WorktreeNotFoundError,
)
from missionforge.core.models import WorktreeRemoval, WorktreeStatus
from missionforge.utils.git import (
    DEFAULT_TIMEOUT,
    find_worktree_branch,
    parse_count,
    parse_git_status_output,
    run_git,
)

logger = logging.getLogger(__name__)


class WorktreeStore:
    """Maps mission ids to `{worktree_base}/{mission_id}` working trees."""

    def __init__(
        self,
        repo_root: Path,
        worktree_base: Path,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.worktree_base = Path(worktree_base)
        self.timeout = timeout

    def path_for(self, mission_id: str) -> Path:
        """Absolute worktree path for a mission id."""
        if not mission_id or mission_id in (".", "..") or "/" in mission_id or "\\" in mission_id:
            raise ValidationError(f"Invalid mission id for a worktree: {mission_id!r}")
        return (self.worktree_base / mission_id).absolute()

    def exists(self, mission_id: str) -> bool:
        return self.path_for(mission_id).exists()

    async def create(self, mission_id: str, branch_name: str, base_branch: str) -> Path:
        """Create the mission branch (or reuse it) and check it out in a new worktree.

        Raises:
            ValidationError: If branch names are missing
            WorktreeExistsError: If the target directory is already present
            GitCommandError: If branch creation or `worktree add` fails
        """
        if not branch_name:
            raise ValidationError("branch_name is required")
        if not base_branch:
            raise ValidationError("base_branch is required")

        worktree_path = self.path_for(mission_id)
        if worktree_path.exists():
            raise WorktreeExistsError(str(worktree_path))

        self.worktree_base.mkdir(parents=True, exist_ok=True)

        await self._ensure_branch(branch_name, base_branch)

        try:
            await run_git(
                ["worktree", "add", str(worktree_path), branch_name],
                self.repo_root,
                timeout=self.timeout,
            )
        except GitCommandError:
            await self._discard_partial(worktree_path)
            raise

        logger.info(f"Created worktree for mission {mission_id} at {worktree_path} on {branch_name}")
        return worktree_path

    async def remove(self, mission_id: str, delete_branch: bool = False) -> WorktreeRemoval:
        """Force-remove a mission's worktree, optionally deleting its local branch.

        A failed branch deletion is reported on the result; the worktree is
        already gone at that point and a stray local branch is acceptable.

        Raises:
            WorktreeNotFoundError: If no worktree directory exists
            GitCommandError: If `git worktree remove` fails
        """
        worktree_path = self.path_for(mission_id)
        if not worktree_path.exists():
            raise WorktreeNotFoundError(f"Worktree not found: {worktree_path}")

        branch: str | None = None
        if delete_branch:
            branch = await self._lookup_branch(worktree_path)

        await run_git(
            ["worktree", "remove", "--force", str(worktree_path)],
            self.repo_root,
            timeout=self.timeout,
        )
        logger.info(f"Removed worktree for mission {mission_id}")

        if not delete_branch or branch is None:
            return WorktreeRemoval(removed=True, branch=branch)

        try:
            await run_git(["branch", "-D", branch], self.repo_root, timeout=self.timeout)
        except GitCommandError as e:
            logger.warning(f"Worktree removed but branch {branch} could not be deleted: {e}")
            return WorktreeRemoval(removed=True, branch=branch, error=str(e))

        return WorktreeRemoval(removed=True, branch=branch, branch_deleted=True)

    async def status(self, mission_id: str, base_branch: str = "main") -> WorktreeStatus:
        """Report branch, dirty flag and commits ahead of base. Never raises for a missing worktree."""
        worktree_path = self.path_for(mission_id)
        if not worktree_path.exists():
            return WorktreeStatus(exists=False)

        branch = await run_git(["branch", "--show-current"], worktree_path, timeout=self.timeout)
        porcelain = await run_git(["status", "--porcelain"], worktree_path, timeout=self.timeout)

        commits_ahead = 0
        try:
            count = await run_git(
                ["rev-list", "--count", f"{base_branch}..HEAD"],
                worktree_path,
                timeout=self.timeout,
            )
            commits_ahead = parse_count(count.stdout)
        except GitCommandError as e:
            logger.debug(f"Could not count commits ahead of {base_branch}: {e}")

        return WorktreeStatus(
            exists=True,
            branch=branch.output or None,
            has_uncommitted_changes=parse_git_status_output(porcelain.stdout).has_changes,
            commits_ahead_of_base=commits_ahead,
            worktree_path=worktree_path,
        )

    async def _ensure_branch(self, branch_name: str, base_branch: str) -> None:
        """Create branch_name from base_branch; an existing branch is reused."""
        if await self._branch_exists(branch_name):
            logger.debug(f"Branch {branch_name} already exists, reusing it")
            return
        await run_git(["branch", branch_name, base_branch], self.repo_root, timeout=self.timeout)
        logger.debug(f"Created branch {branch_name} from {base_branch}")

    async def _branch_exists(self, branch_name: str) -> bool:
        try:
            await run_git(
                ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch_name}"],
                self.repo_root,
                timeout=self.timeout,
            )
        except GitCommandError as e:
            if e.timed_out:
                raise
            return False
        return True

    async def _lookup_branch(self, worktree_path: Path) -> str | None:
        try:
            listing = await run_git(["worktree", "list", "--porcelain"], self.repo_root, timeout=self.timeout)
        except GitCommandError as e:
            logger.warning(f"Could not list worktrees: {e}")
            return None
        return find_worktree_branch(listing.stdout, worktree_path)

    async def _discard_partial(self, worktree_path: Path) -> None:
        """Drop whatever a failed `worktree add` left behind."""
        if worktree_path.exists():
            shutil.rmtree(worktree_path, ignore_errors=True)
        try:
            await run_git(["worktree", "prune"], self.repo_root, timeout=self.timeout)
        except GitCommandError as e:
            logger.warning(f"git worktree prune failed: {e}")
